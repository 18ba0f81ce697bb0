"""Registry of supported tunnel providers.

Each provider is pure data: how it is driven (a subprocess or a connect
call), whether it can honour a custom subdomain, and for subprocess
providers the command line and the matchers used to read its output.
"""

import re
from collections.abc import Iterator, Sequence
from enum import Enum
from functools import lru_cache
from re import Pattern

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


@lru_cache(maxsize=32)
def _compile_cached(pattern: str) -> Pattern[str]:
    return re.compile(pattern)


class ProviderKind(str, Enum):
    """How a provider establishes its tunnel."""

    SUBPROCESS = "subprocess"
    CONNECT = "connect"


class OutputMatcher(BaseModel):
    """Patterns used to read a tunnel program's output line by line."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    http_pattern: str = Field(description="Regex matching the public HTTP URL")
    https_pattern: str = Field(description="Regex matching the public HTTPS URL")
    benign_error: str | None = Field(
        default=None, description="Substring of stderr lines that are not errors"
    )

    @field_validator("http_pattern", "https_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Ensure the pattern compiles."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid pattern '{v}': {e}") from e
        return v

    def match_https(self, line: str) -> str | None:
        """Return the HTTPS URL found in the line, if any."""
        match = _compile_cached(self.https_pattern).search(line)
        return match.group(0) if match else None

    def match_http(self, line: str) -> str | None:
        """Return the HTTP URL found in the line, if any."""
        match = _compile_cached(self.http_pattern).search(line)
        return match.group(0) if match else None

    def is_benign(self, line: str) -> bool:
        """Check if an error stream line is known noise."""
        return self.benign_error is not None and self.benign_error in line


class TunnelProvider(BaseModel):
    """A tunnel backend and its capabilities."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, description="Provider identifier")
    short_alias: str = Field(min_length=1, description="Short alias for the CLI")
    supports_custom_subdomain: bool = Field(default=False)
    kind: ProviderKind = Field(default=ProviderKind.SUBPROCESS)
    command: tuple[str, ...] = Field(
        default=(), description="Command template, '{port}' is substituted"
    )
    matcher: OutputMatcher | None = Field(default=None)

    @model_validator(mode="after")
    def validate_subprocess_fields(self) -> "TunnelProvider":
        """Subprocess providers need a command and output matchers."""
        if self.kind == ProviderKind.SUBPROCESS and (
            not self.command or self.matcher is None
        ):
            raise ValueError(
                f"Subprocess provider '{self.id}' requires a command and a matcher"
            )
        return self

    def build_command(self, local_port: int) -> list[str]:
        """Render the command line for the given local port."""
        return [part.format(port=local_port) for part in self.command]

    @property
    def display_name(self) -> str:
        return f"{self.id} ({self.short_alias})"


PINGGY = TunnelProvider(
    id="pinggy",
    short_alias="p",
    supports_custom_subdomain=False,
    kind=ProviderKind.SUBPROCESS,
    command=(
        "ssh",
        "-p",
        "443",
        "-T",
        "-o",
        "LogLevel=ERROR",
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "ServerAliveInterval=30",
        "-R0:localhost:{port}",
        "a.pinggy.io",
    ),
    matcher=OutputMatcher(
        http_pattern=r"http://[A-Za-z0-9.-]+\.pinggy\.(?:link|online)",
        https_pattern=r"https://[A-Za-z0-9.-]+\.pinggy\.(?:link|online)",
        benign_error="Allocated port",
    ),
)

LOCALTUNNEL = TunnelProvider(
    id="localtunnel",
    short_alias="lt",
    supports_custom_subdomain=True,
    kind=ProviderKind.CONNECT,
)


class ProviderRegistry:
    """Fixed, ordered collection of tunnel providers."""

    def __init__(self, providers: Sequence[TunnelProvider]):
        """Initialize registry.

        Args:
            providers: Providers in display order

        Raises:
            ValueError: If an id or alias is used twice
        """
        names: set[str] = set()
        for provider in providers:
            for name in (provider.id, provider.short_alias):
                if name in names:
                    raise ValueError(f"Duplicate provider name '{name}'")
                names.add(name)
        self._providers: tuple[TunnelProvider, ...] = tuple(providers)

    def __iter__(self) -> Iterator[TunnelProvider]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def lookup(self, identifier: str) -> TunnelProvider | None:
        """Find a provider by exact id or short alias (case-sensitive)."""
        for provider in self._providers:
            if identifier in (provider.id, provider.short_alias):
                return provider
        return None

    def providers_supporting_custom_subdomain(self) -> list[TunnelProvider]:
        return [p for p in self._providers if p.supports_custom_subdomain]

    def provider_names(self) -> list[str]:
        return [p.display_name for p in self._providers]


DEFAULT_REGISTRY = ProviderRegistry([PINGGY, LOCALTUNNEL])


def lookup(identifier: str) -> TunnelProvider | None:
    """Find a provider in the default registry."""
    return DEFAULT_REGISTRY.lookup(identifier)


def providers_supporting_custom_subdomain() -> list[TunnelProvider]:
    """Providers in the default registry that accept a custom subdomain."""
    return DEFAULT_REGISTRY.providers_supporting_custom_subdomain()
