"""Custom exceptions for tunnel-serve."""


class TunnelServeError(Exception):
    """Base exception for all tunnel-serve errors."""

    pass


class ValidationError(TunnelServeError):
    """Raised when command line input is invalid."""

    pass


class ProviderError(ValidationError):
    """Raised when an unknown tunnel provider is requested."""

    pass


class ServerError(TunnelServeError):
    """Raised when the local HTTP server cannot be started."""

    pass


class TunnelSessionError(TunnelServeError):
    """Raised when a tunnel session cannot be established."""

    pass


class SpawnError(TunnelSessionError):
    """Raised when the tunnel provider program cannot be started."""

    pass


class TunnelConnectError(TunnelSessionError):
    """Raised when a tunnel connection does not produce a public URL."""

    pass
