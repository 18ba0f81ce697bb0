"""Tunnel request and session status models."""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .registry import TunnelProvider

# Subdomain labels accepted by tunnel services: lowercase letters, digits
# and inner hyphens.
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class SessionStatus(str, Enum):
    """Tunnel session status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"
    CLOSED = "closed"


class TunnelRequest(BaseModel):
    """A validated request to expose a local port through a provider."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: TunnelProvider = Field(description="Provider to tunnel through")
    local_port: int = Field(ge=1, le=65535, description="Local port to expose")
    subdomain: str | None = Field(default=None, description="Requested subdomain")

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str | None) -> str | None:
        """Validate subdomain format."""
        if v is None:
            return v
        if not SUBDOMAIN_PATTERN.match(v):
            raise ValueError(
                f"Invalid subdomain '{v}': use lowercase letters, digits and "
                "hyphens (not at either end), at most 63 characters"
            )
        return v

    @model_validator(mode="after")
    def validate_subdomain_support(self) -> "TunnelRequest":
        """A subdomain can only be requested from a capable provider."""
        if self.subdomain is not None and not self.provider.supports_custom_subdomain:
            raise ValueError(
                f"Tunnel provider '{self.provider.id}' does not support custom subdomains"
            )
        return self
