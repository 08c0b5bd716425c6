"""
IntegrationConfig -- resolved LHDN integration settings.

Responsibility:
    The frozen runtime view of one active LHDN configuration row: which
    environment, where the authority lives, which credentials to present,
    and how patient/persistent to be when calling it.

Architecture position:
    Kernel > Domain -- pure value objects.  ``einvoice_config`` parses
    persisted settings into these types; the kernel never reads
    configuration storage itself.

Invariants enforced:
    - ``MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS``.
    - ``base_url`` is non-empty, has a scheme, and has no trailing slash.
    - Immutable within a single operation (frozen dataclass).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Protocol, runtime_checkable

MIN_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 300_000

DEFAULT_SCOPE = "InvoicingAPI"


def normalize_base_url(url: str) -> str:
    """Prefix ``https://`` when no scheme is given and strip trailing slashes."""
    text = (url or "").strip()
    if text and not text.startswith(("http://", "https://")):
        text = f"https://{text}"
    return text.rstrip("/")


@unique
class Environment(str, Enum):
    """Authority environment the integration targets."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"


@dataclass(frozen=True)
class RateLimitSettings:
    """Client-side pacing for the document submission endpoint."""

    submission_requests_per_minute: int
    min_interval_ms: int


@dataclass(frozen=True, repr=False)
class IntegrationConfig:
    """
    Active LHDN integration settings.

    ``max_retries`` is the total attempt budget per authority call when
    ``retry_enabled`` is true; a disabled retry policy means one attempt.
    """

    environment: Environment
    base_url: str
    client_id: str
    client_secret: str
    timeout_ms: int
    retry_enabled: bool
    max_retries: int
    retry_delay_ms: int
    max_retry_delay_ms: int
    rate_limit: RateLimitSettings
    scope: str = DEFAULT_SCOPE
    tin: str | None = None
    config_id: str | None = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def endpoint(self, path: str) -> str:
        """Absolute URL for an authority path such as ``/connect/token``."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def __repr__(self) -> str:
        return (
            f"IntegrationConfig(environment={self.environment.value!r}, "
            f"base_url={self.base_url!r}, client_id={self.client_id!r}, "
            f"client_secret='***', timeout_ms={self.timeout_ms}, "
            f"max_retries={self.max_retries}, config_id={self.config_id!r})"
        )


@runtime_checkable
class ConfigSource(Protocol):
    """Anything that can produce the active IntegrationConfig.

    Implementations: einvoice_config.ConfigProvider (database row),
    StaticConfigSource (fixed value, tests and one-off scripts).
    """

    def get_active_config(self) -> IntegrationConfig:
        ...


class StaticConfigSource:
    """ConfigSource that always returns the same config."""

    def __init__(self, config: IntegrationConfig):
        self._config = config

    def get_active_config(self) -> IntegrationConfig:
        return self._config
