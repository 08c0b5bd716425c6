"""
einvoice_config -- single public entrypoint for LHDN integration settings.

Responsibility:
    Provides the ONLY way to obtain the integration configuration at
    runtime through ``get_active_config()`` (or a ``ConfigProvider`` bound
    to a session factory).  No other component reads the
    ``integration_settings`` table or settings files directly.

Architecture position:
    Configuration layer.  Sits above ``einvoice_kernel`` and below
    ``einvoice_services``.  The kernel MUST NEVER import from
    ``einvoice_config``; kernel services depend on the ``ConfigSource``
    protocol instead.

Invariants enforced:
    - Most recently created active row wins.
    - Timeout clamped to [30 s, 300 s]; base URL normalised.
    - The returned config is frozen for the duration of one operation.

Failure modes:
    - ``ConfigNotFoundError`` -- no active row of the integration type.
    - ``ConfigInvalidError`` -- the row exists but cannot be used.

Audit relevance:
    Every successful read emits an ``integration_config_loaded`` log entry
    carrying the row id, environment and a checksum of the settings
    (secret masked), tying each authority call to the settings that
    governed it.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from einvoice_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_integration_settings,
    seed_integration_settings,
)
from einvoice_config.provider import ConfigProvider, load_active_config
from einvoice_config.runtime import RuntimeSettings
from einvoice_kernel.domain.integration_config import (
    Environment,
    IntegrationConfig,
    RateLimitSettings,
)
from einvoice_kernel.models.integration_setting import LHDN_INTEGRATION_TYPE


def get_active_config(
    session: Session, integration_type: str = LHDN_INTEGRATION_TYPE
) -> IntegrationConfig:
    """The public configuration entrypoint.

    Args:
        session: Session to read ``integration_settings`` with.
        integration_type: Settings row type, ``"LHDN"`` by default.

    Raises:
        ConfigNotFoundError: No active row.
        ConfigInvalidError: Row cannot be parsed into a usable config.
    """
    return load_active_config(session, integration_type)


__all__ = [
    "ConfigProvider",
    "Environment",
    "IntegrationConfig",
    "RateLimitSettings",
    "RuntimeSettings",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
    "parse_integration_settings",
    "seed_integration_settings",
]
