"""Command line entry point for tunnel-serve."""

import asyncio
from enum import Enum

import typer

from . import __version__
from .app import console, print_error, run
from .common.exceptions import ValidationError
from .common.logging import get_logger, setup_logging
from .common.utils import EXIT_FAILURE
from .config import DEFAULT_PORT, resolve_options
from .tunnel.registry import DEFAULT_REGISTRY

logger = get_logger(__name__)

PROVIDER_HELP = ", ".join(DEFAULT_REGISTRY.provider_names())
SUBDOMAIN_PROVIDERS = ", ".join(
    p.id for p in DEFAULT_REGISTRY.providers_supporting_custom_subdomain()
)


class LogLevel(str, Enum):
    """Accepted log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


app = typer.Typer(
    name="tunnel-serve",
    help="Serve a local file or directory over HTTP, optionally through a public tunnel.",
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool | None) -> None:
    if value:
        console.print(f"tunnel-serve {__version__}")
        raise typer.Exit()


@app.command()
def serve(
    path: str | None = typer.Argument(
        None,
        help="File or directory to serve [default: current directory]",
        show_default=False,
    ),
    port: str = typer.Option(
        str(DEFAULT_PORT),
        "--port",
        "-p",
        help="Local HTTP port (1-65535)",
    ),
    tunnel: str | None = typer.Option(
        None,
        "--tunnel",
        "-t",
        help=f"Expose the server through a tunnel provider: {PROVIDER_HELP}",
    ),
    tunnel_subdomain: str | None = typer.Option(
        None,
        "--tunnel-subdomain",
        "-s",
        help=f"Request a tunnel subdomain (supported by: {SUBDOMAIN_PROVIDERS})",
    ),
    directory: str | None = typer.Option(
        None,
        "--dir",
        "-d",
        help="Directory to serve, same as the positional path",
    ),
    log_level: LogLevel = typer.Option(
        LogLevel.WARNING,
        "--log-level",
        envvar="TUNNEL_SERVE_LOG_LEVEL",
        case_sensitive=False,
        help="Log level for diagnostics on stderr",
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version information",
    ),
) -> None:
    """Serve PATH on the local port and optionally print a public tunnel URL.

    Press Ctrl+C twice within a second to stop.
    """
    setup_logging(level=log_level.value)

    try:
        options = resolve_options(
            port=port,
            path=path,
            directory=directory,
            tunnel=tunnel,
            subdomain=tunnel_subdomain,
        )
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_FAILURE) from e

    logger.debug(
        "Options resolved",
        port=options.port,
        path=str(options.path),
        provider=options.tunnel.provider.id if options.tunnel else None,
    )
    status = asyncio.run(run(options))
    raise typer.Exit(code=status)


def cli_main() -> None:
    """Main entry point for the ``tunnel-serve`` command."""
    app()
