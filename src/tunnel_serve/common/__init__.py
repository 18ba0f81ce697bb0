"""Common utilities and shared functionality."""

from .exceptions import (
    ProviderError,
    ServerError,
    SpawnError,
    TunnelConnectError,
    TunnelServeError,
    TunnelSessionError,
    ValidationError,
)
from .logging import get_logger, setup_logging
from .utils import (
    BENIGN_EXIT_CODES,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    MAX_PORT,
    MIN_PORT,
    exit_status_for,
    parse_port,
    validate_port,
)

__all__ = [
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
    # Utils
    "validate_port",
    "parse_port",
    "exit_status_for",
    "BENIGN_EXIT_CODES",
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "MIN_PORT",
    "MAX_PORT",
]
