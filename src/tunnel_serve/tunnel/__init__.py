"""Tunnel providers and sessions."""

from .localtunnel import LocaltunnelClient, LocaltunnelConnection
from .models import SessionStatus, TunnelRequest
from .registry import (
    DEFAULT_REGISTRY,
    LOCALTUNNEL,
    PINGGY,
    OutputMatcher,
    ProviderKind,
    ProviderRegistry,
    TunnelProvider,
    lookup,
    providers_supporting_custom_subdomain,
)
from .session import (
    ConnectTunnelSession,
    SubprocessTunnelSession,
    TunnelConnection,
    TunnelSession,
    create_session,
)

__all__ = [
    # Registry
    "TunnelProvider",
    "OutputMatcher",
    "ProviderKind",
    "ProviderRegistry",
    "DEFAULT_REGISTRY",
    "PINGGY",
    "LOCALTUNNEL",
    "lookup",
    "providers_supporting_custom_subdomain",
    # Models
    "TunnelRequest",
    "SessionStatus",
    # Sessions
    "TunnelSession",
    "SubprocessTunnelSession",
    "ConnectTunnelSession",
    "TunnelConnection",
    "create_session",
    # localtunnel
    "LocaltunnelClient",
    "LocaltunnelConnection",
]
