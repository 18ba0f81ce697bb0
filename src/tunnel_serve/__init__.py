"""tunnel-serve - serve local files over HTTP and share them through a tunnel."""

__version__ = "0.1.0"

from .common.exceptions import (  # noqa: E402
    ProviderError,
    ServerError,
    SpawnError,
    TunnelConnectError,
    TunnelServeError,
    TunnelSessionError,
    ValidationError,
)
from .common.logging import get_logger, setup_logging  # noqa: E402
from .config import ServeOptions, resolve_options  # noqa: E402
from .coordinator import (  # noqa: E402
    CoordinatorSettings,
    CoordinatorState,
    ExitCoordinator,
)
from .server import StaticServer  # noqa: E402
from .tunnel import (  # noqa: E402
    DEFAULT_REGISTRY,
    SessionStatus,
    TunnelProvider,
    TunnelRequest,
    TunnelSession,
    create_session,
)

__all__ = [
    # Options
    "ServeOptions",
    "resolve_options",
    # Server
    "StaticServer",
    # Tunnels
    "DEFAULT_REGISTRY",
    "TunnelProvider",
    "TunnelRequest",
    "TunnelSession",
    "SessionStatus",
    "create_session",
    # Exit coordination
    "ExitCoordinator",
    "CoordinatorSettings",
    "CoordinatorState",
    # Exceptions
    "TunnelServeError",
    "ValidationError",
    "ProviderError",
    "ServerError",
    "TunnelSessionError",
    "SpawnError",
    "TunnelConnectError",
    # Logging
    "get_logger",
    "setup_logging",
]
