"""Run orchestration: server first, then the tunnel, then wait for exit."""

import asyncio
import contextlib
import functools

from rich.console import Console
from rich.markup import escape

from .common.exceptions import ServerError
from .common.logging import get_logger
from .common.utils import EXIT_FAILURE, EXIT_SUCCESS, exit_status_for
from .config import ServeOptions
from .coordinator import CoordinatorSettings, ExitCoordinator
from .server import StaticServer
from .tunnel.models import SessionStatus
from .tunnel.session import Connector, TunnelSession, create_session

logger = get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

SESSION_CLOSE_TIMEOUT = 5.0


def print_error(message: str) -> None:
    """Print an error diagnostic to stderr."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", soft_wrap=True)


def print_info(message: str) -> None:
    console.print(message, soft_wrap=True)


def _report_ready(url: str) -> None:
    print_info(f"Public URL: [bold green]{escape(url)}[/bold green]")


def _report_termination(session: TunnelSession, exit_code: int | None) -> None:
    if session.stop_requested:
        return
    if exit_status_for(exit_code) == EXIT_SUCCESS:
        print_info("Tunnel closed")
        return
    detail = session.failure_reason or f"exit code {exit_code}"
    print_error(f"Tunnel terminated abnormally ({detail})")


async def _start_session(session: TunnelSession, coordinator: ExitCoordinator) -> None:
    """Start the session unless the coordinator terminates first.

    A connect-backed start can take a long time; shutdown confirmed in the
    meantime cancels it.
    """
    starting = asyncio.create_task(session.start(), name="tunnel-start")
    try:
        await asyncio.wait(
            {starting, coordinator.exit_future}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        starting.cancel()
        raise

    if not starting.done():
        logger.info("Shutdown requested while the tunnel was starting")
        starting.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await starting
        return

    starting.result()
    if session.status == SessionStatus.FAILED:
        print_error(f"Tunnel failed: {session.failure_reason}")
        coordinator.fail()


async def run(
    options: ServeOptions,
    settings: CoordinatorSettings | None = None,
    connector: Connector | None = None,
) -> int:
    """Serve the path, open the tunnel if requested, and wait for exit.

    The coordinator listens for shutdown input before the tunnel is
    started, so confirmed shutdown also interrupts a pending connect.

    Args:
        options: Validated command line options
        settings: Keyboard confirmation settings
        connector: Override for connect-backed tunnel providers

    Returns:
        Exit status for the process
    """
    server = StaticServer(options.path, options.port)
    try:
        server.start()
    except ServerError as e:
        print_error(str(e))
        return EXIT_FAILURE

    print_info(
        f"Serving [bold]{escape(str(options.path))}[/bold] at "
        f"[cyan]{server.local_url}[/cyan]"
    )

    settings = settings or CoordinatorSettings()
    coordinator = ExitCoordinator(
        settings,
        on_armed=lambda: print_info(f"Press {settings.key_label} again to stop"),
    )
    session: TunnelSession | None = None

    try:
        coordinator.attach()
        print_info(f"Press {settings.key_label} twice to stop")

        if options.tunnel is not None:
            session = create_session(options.tunnel, connector=connector)
            session.on_ready(_report_ready)
            session.on_terminated(functools.partial(_report_termination, session))
            coordinator.watch(session)

            print_info(f"Starting {options.tunnel.provider.id} tunnel...")
            await _start_session(session, coordinator)

        status = await coordinator.wait()
        logger.info("Run finished", status=status)
        return status
    finally:
        coordinator.detach()
        if session is not None:
            session.stop()
            await session.wait_closed(timeout=SESSION_CLOSE_TIMEOUT)
        server.stop()
