"""
ConfigProvider -- reads the active LHDN settings row.

Responsibility:
    Selects the most recently created active ``integration_settings`` row
    of the requested type and parses it into an IntegrationConfig.  Reads
    happen on every call, so an operator's new row takes effect on the
    next operation without a restart.

Architecture position:
    Config layer.  Implements ``einvoice_kernel.domain.ConfigSource`` so
    kernel services can depend on the protocol, not on this package.

Failure modes:
    - ConfigNotFoundError when no active row exists.
    - ConfigInvalidError when the row cannot be parsed.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from einvoice_config.loader import compute_checksum, parse_integration_settings
from einvoice_kernel.domain.integration_config import IntegrationConfig
from einvoice_kernel.exceptions import ConfigNotFoundError
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.models.integration_setting import (
    LHDN_INTEGRATION_TYPE,
    IntegrationSetting,
)

logger = get_logger("config.provider")


def select_active_setting(
    session: Session, integration_type: str = LHDN_INTEGRATION_TYPE
) -> IntegrationSetting | None:
    stmt = (
        select(IntegrationSetting)
        .where(IntegrationSetting.type == integration_type)
        .where(IntegrationSetting.is_active.is_(True))
        .order_by(IntegrationSetting.created_at.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


def load_active_config(
    session: Session, integration_type: str = LHDN_INTEGRATION_TYPE
) -> IntegrationConfig:
    """Read and parse the active row using ``session``."""
    row = select_active_setting(session, integration_type)
    if row is None:
        raise ConfigNotFoundError(integration_type)

    config_id = str(row.id)
    config = parse_integration_settings(row.settings, config_id=config_id)
    logger.info(
        "integration_config_loaded",
        extra={
            "config_id": config_id,
            "integration_type": integration_type,
            "environment": config.environment.value,
            "base_url": config.base_url,
            "checksum": compute_checksum(row.settings)
            if isinstance(row.settings, dict) else None,
        },
    )
    return config


class ConfigProvider:
    """
    ConfigSource backed by the ``integration_settings`` table.

    Opens a short-lived session per read so it can be shared process-wide.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        integration_type: str = LHDN_INTEGRATION_TYPE,
    ):
        self._session_factory = session_factory
        self._integration_type = integration_type

    def get_active_config(self) -> IntegrationConfig:
        with self._session_factory() as session:
            return load_active_config(session, self._integration_type)
