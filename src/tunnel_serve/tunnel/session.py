"""Tunnel sessions.

A session is one attempt to expose a local port through a provider, from
start until the underlying process or connection ends. Two kinds exist:

* ``SubprocessTunnelSession`` spawns the provider's program and reads its
  output line by line. It becomes active when the HTTPS URL is printed.
* ``ConnectTunnelSession`` awaits a connector call that resolves to a
  connection with a public URL.

Both report termination exactly once through ``on_terminated`` handlers.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from ..common.exceptions import TunnelSessionError
from ..common.logging import get_logger
from ..common.utils import BENIGN_EXIT_CODES
from .lines import iter_lines
from .localtunnel import LocaltunnelClient
from .models import SessionStatus, TunnelRequest
from .registry import LOCALTUNNEL, ProviderKind

logger = get_logger(__name__)

ReadyHandler = Callable[[str], None]
TerminatedHandler = Callable[[int | None], None]


class TunnelConnection(Protocol):
    """What a connector resolves to."""

    url: str

    async def wait_closed(self) -> None: ...

    def close(self) -> None: ...


Connector = Callable[[int, str | None], Awaitable[TunnelConnection]]


class TunnelSession(ABC):
    """Base class for a single tunnel attempt."""

    def __init__(self, request: TunnelRequest):
        self.request = request
        self.public_url: str | None = None
        self.failure_reason: str | None = None
        self.exit_code: int | None = None
        self._status = SessionStatus.PENDING
        self._ready_handlers: list[ReadyHandler] = []
        self._terminated_handlers: list[TerminatedHandler] = []
        self._terminated = False
        self._stopped = False
        self._watcher: asyncio.Task[None] | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def provider_id(self) -> str:
        return self.request.provider.id

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def stop_requested(self) -> bool:
        """True once stop() has been called."""
        return self._stopped

    def on_ready(self, handler: ReadyHandler) -> None:
        """Register a handler called with the public URL once available."""
        self._ready_handlers.append(handler)
        if self._status == SessionStatus.ACTIVE and self.public_url is not None:
            handler(self.public_url)

    def on_terminated(self, handler: TerminatedHandler) -> None:
        """Register a handler called once when the tunnel ends.

        The handler receives the raw exit code of the provider process, or
        None when the tunnel was a connection without an exit code.
        """
        self._terminated_handlers.append(handler)
        if self._terminated:
            handler(self.exit_code)

    @abstractmethod
    async def start(self) -> "TunnelSession":
        """Begin establishing the tunnel."""

    @abstractmethod
    def stop(self) -> None:
        """Forcibly end the tunnel. Safe to call more than once."""

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Wait for the session's background watcher to finish."""
        if self._watcher is None or self._watcher.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._watcher), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Tunnel did not close in time", provider=self.provider_id, timeout=timeout
            )

    def _mark_active(self, url: str) -> None:
        if self._status != SessionStatus.PENDING:
            return
        self._status = SessionStatus.ACTIVE
        self.public_url = url
        logger.info("Tunnel active", provider=self.provider_id, url=url)
        self._notify(self._ready_handlers, url)

    def _notify(self, handlers: Sequence[Callable[..., None]], *args: Any) -> None:
        # A failing handler must not stop the others or kill the watcher.
        for handler in list(handlers):
            try:
                handler(*args)
            except Exception:
                logger.exception(
                    "Tunnel event handler failed", provider=self.provider_id
                )

    def _mark_failed(self, reason: str) -> None:
        if self._status in (SessionStatus.FAILED, SessionStatus.CLOSED):
            return
        self._status = SessionStatus.FAILED
        self.failure_reason = reason
        logger.error("Tunnel failed", provider=self.provider_id, reason=reason)

    def _mark_terminated(self, exit_code: int | None) -> None:
        if self._terminated:
            return
        self._terminated = True
        self.exit_code = exit_code

        if self._status == SessionStatus.ACTIVE:
            self._status = SessionStatus.CLOSED
        elif self._status == SessionStatus.PENDING:
            if exit_code is None or exit_code in BENIGN_EXIT_CODES:
                self._status = SessionStatus.CLOSED
            else:
                self._mark_failed(
                    f"exited with code {exit_code} before a public URL was received"
                )

        logger.info(
            "Tunnel terminated",
            provider=self.provider_id,
            exit_code=exit_code,
            status=self._status.value,
        )
        self._notify(self._terminated_handlers, exit_code)


class SubprocessTunnelSession(TunnelSession):
    """Tunnel backed by an external program such as ssh."""

    def __init__(self, request: TunnelRequest):
        super().__init__(request)
        matcher = request.provider.matcher
        if request.provider.kind != ProviderKind.SUBPROCESS or matcher is None:
            raise TunnelSessionError(
                f"Provider '{request.provider.id}' is not a subprocess provider"
            )
        self._matcher = matcher
        self._process: asyncio.subprocess.Process | None = None
        self._kill_sent = False

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self._process is not None and self._process.returncode is None:
            return self._process.pid
        return None

    def is_running(self) -> bool:
        """Check if the provider process is currently running"""
        return self._process is not None and self._process.returncode is None

    async def start(self) -> "SubprocessTunnelSession":
        """Spawn the provider program.

        Returns as soon as the process exists; readiness is reported later
        through ``on_ready``. A spawn failure leaves the session FAILED.
        """
        if self._process is not None or self._status != SessionStatus.PENDING:
            logger.debug("Tunnel already started", provider=self.provider_id)
            return self

        cmd = self.request.provider.build_command(self.request.local_port)
        logger.info(
            "Starting tunnel process", provider=self.provider_id, command=" ".join(cmd)
        )
        try:
            # stdin stays open and unused so the remote side never sees EOF
            # and the keyboard belongs to the exit coordinator.
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._mark_failed(f"Failed to start '{cmd[0]}': {e}")
            return self

        logger.info(
            "Tunnel process started", provider=self.provider_id, pid=self._process.pid
        )
        self._watcher = asyncio.create_task(
            self._watch(self._process), name=f"tunnel-{self.provider_id}"
        )
        return self

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        assert process.stderr is not None
        try:
            await asyncio.gather(
                self._read_stdout(process.stdout), self._read_stderr(process.stderr)
            )
        except Exception:
            logger.exception("Reading tunnel output failed", provider=self.provider_id)
            self._kill()
        exit_code = await process.wait()
        self._mark_terminated(exit_code)

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        async for line in iter_lines(stream):
            logger.debug("Tunnel output", provider=self.provider_id, line=line)
            self.handle_output_line(line)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        async for line in iter_lines(stream):
            self.handle_error_line(line)

    def handle_output_line(self, line: str) -> None:
        """Look for the public URLs in a line of standard output."""
        https_url = self._matcher.match_https(line)
        if https_url is not None:
            self._mark_active(https_url)
            return

        http_url = self._matcher.match_http(line)
        if http_url is not None:
            logger.info("Tunnel HTTP URL", provider=self.provider_id, url=http_url)

    def handle_error_line(self, line: str) -> None:
        """Report a line of standard error unless it is known noise."""
        if not line.strip():
            return
        if self._matcher.is_benign(line):
            logger.debug("Tunnel notice", provider=self.provider_id, line=line)
            return
        logger.warning(
            "Tunnel provider reported an error", provider=self.provider_id, line=line
        )

    def stop(self) -> None:
        """Kill the provider process if it is still running.

        The process is signalled at most once.
        """
        if self._stopped:
            return
        self._stopped = True
        self._kill()

    def _kill(self) -> None:
        if self._kill_sent or not self.is_running():
            logger.debug("Tunnel process not running, nothing to stop")
            return
        self._kill_sent = True

        assert self._process is not None
        logger.info(
            "Stopping tunnel process", provider=self.provider_id, pid=self._process.pid
        )
        try:
            self._process.kill()
        except ProcessLookupError:
            logger.debug("Tunnel process already exited", provider=self.provider_id)


class ConnectTunnelSession(TunnelSession):
    """Tunnel established by awaiting a connector call."""

    def __init__(self, request: TunnelRequest, connector: Connector):
        super().__init__(request)
        self._connector = connector
        self._connection: TunnelConnection | None = None

    async def start(self) -> "ConnectTunnelSession":
        """Await the connector until it resolves to a URL or fails."""
        if self._connection is not None or self._status != SessionStatus.PENDING:
            logger.debug("Tunnel already started", provider=self.provider_id)
            return self

        logger.info(
            "Connecting tunnel",
            provider=self.provider_id,
            port=self.request.local_port,
            subdomain=self.request.subdomain,
        )
        try:
            connection = await self._connector(
                self.request.local_port, self.request.subdomain
            )
        except (TunnelSessionError, OSError) as e:
            self._mark_failed(str(e))
            return self
        except asyncio.CancelledError:
            logger.info("Tunnel connect cancelled", provider=self.provider_id)
            self._mark_terminated(None)
            raise

        self._connection = connection
        if self._stopped:
            connection.close()
            self._mark_terminated(None)
            return self

        self._mark_active(connection.url)
        self._watcher = asyncio.create_task(
            self._watch(connection), name=f"tunnel-{self.provider_id}"
        )
        return self

    async def _watch(self, connection: TunnelConnection) -> None:
        try:
            await connection.wait_closed()
        except Exception:
            logger.exception("Tunnel connection failed", provider=self.provider_id)
            connection.close()
        self._mark_terminated(None)

    def stop(self) -> None:
        """Close the connection if one was established."""
        if self._stopped:
            return
        self._stopped = True
        if self._connection is not None:
            logger.info("Closing tunnel connection", provider=self.provider_id)
            self._connection.close()


def default_connector(request: TunnelRequest) -> Connector:
    """Connector used for a connect-backed provider.

    Raises:
        TunnelSessionError: If no connector is known for the provider
    """
    if request.provider.id == LOCALTUNNEL.id:
        return LocaltunnelClient().connect
    raise TunnelSessionError(f"No connector available for '{request.provider.id}'")


def create_session(
    request: TunnelRequest, connector: Connector | None = None
) -> TunnelSession:
    """Create the session type matching the request's provider."""
    if request.provider.kind == ProviderKind.SUBPROCESS:
        return SubprocessTunnelSession(request)
    return ConnectTunnelSession(request, connector or default_connector(request))
