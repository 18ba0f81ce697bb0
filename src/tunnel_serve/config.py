"""Normalization and validation of command line input."""

from pathlib import Path

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import ProviderError, ValidationError
from .common.utils import parse_port
from .tunnel.models import TunnelRequest
from .tunnel.registry import DEFAULT_REGISTRY, ProviderRegistry, TunnelProvider

DEFAULT_PORT = 3000


class ServeOptions(BaseModel):
    """Validated options for one run of the tool."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Local port")
    path: Path = Field(description="Existing file or directory to serve")
    tunnel: TunnelRequest | None = Field(
        default=None, description="Tunnel to open once the server listens"
    )


def _first_error(error: pydantic.ValidationError) -> str:
    message = str(error.errors()[0]["msg"])
    return message.removeprefix("Value error, ")


def _resolve_path(path: str | None, directory: str | None) -> Path:
    if path is not None and directory is not None:
        if Path(path).expanduser().resolve() != Path(directory).expanduser().resolve():
            raise ValidationError(
                f"Conflicting paths '{path}' and '--dir {directory}': give only one"
            )

    target = directory if directory is not None else path
    if target is None:
        target = "."

    resolved = Path(target).expanduser().resolve()
    if not resolved.exists():
        raise ValidationError(f"Path does not exist: {target}")
    if not (resolved.is_file() or resolved.is_dir()):
        raise ValidationError(f"Path is not a file or directory: {target}")
    return resolved


def _resolve_provider(
    tunnel: str | None, subdomain: str | None, registry: ProviderRegistry
) -> TunnelProvider | None:
    capable = registry.providers_supporting_custom_subdomain()
    capable_names = ", ".join(p.display_name for p in capable) or "none"

    if tunnel is not None:
        provider = registry.lookup(tunnel)
        if provider is None:
            raise ProviderError(
                f"Unknown tunnel provider '{tunnel}'. "
                f"Available providers: {', '.join(registry.provider_names())}"
            )
    elif subdomain is not None:
        if not capable:
            raise ValidationError("No tunnel provider supports custom subdomains")
        provider = capable[0]
    else:
        return None

    if subdomain is not None and not provider.supports_custom_subdomain:
        raise ValidationError(
            f"Tunnel provider '{provider.id}' does not support custom subdomains. "
            f"Providers with subdomain support: {capable_names}"
        )
    return provider


def resolve_options(
    port: str | int = DEFAULT_PORT,
    path: str | None = None,
    directory: str | None = None,
    tunnel: str | None = None,
    subdomain: str | None = None,
    registry: ProviderRegistry = DEFAULT_REGISTRY,
) -> ServeOptions:
    """Turn raw command line values into validated options.

    Args:
        port: Port as given on the command line
        path: Positional path argument
        directory: Value of --dir
        tunnel: Provider id or alias
        subdomain: Requested tunnel subdomain
        registry: Providers to choose from

    Returns:
        Validated options

    Raises:
        ValidationError: If any value is invalid
        ProviderError: If the tunnel provider is unknown
    """
    try:
        local_port = parse_port(port)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    resolved_path = _resolve_path(path, directory)
    provider = _resolve_provider(tunnel, subdomain, registry)

    request = None
    if provider is not None:
        try:
            request = TunnelRequest(
                provider=provider, local_port=local_port, subdomain=subdomain
            )
        except pydantic.ValidationError as e:
            raise ValidationError(_first_error(e)) from e

    return ServeOptions(port=local_port, path=resolved_path, tunnel=request)
