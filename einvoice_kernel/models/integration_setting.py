"""
Module: einvoice_kernel.models.integration_setting
Responsibility: ORM persistence for authority integration settings rows.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one active row per integration type is expected; readers
      take the most recently created active row regardless.

Audit relevance:
    Prior rows are deactivated, never deleted, so the history of settings
    an operator applied is retained.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import Base, UTCDateTime

LHDN_INTEGRATION_TYPE = "LHDN"


class IntegrationSetting(Base):
    """One settings payload for an external integration (camelCase JSON)."""

    __tablename__ = "integration_settings"

    __table_args__ = (
        Index("idx_integration_active", "type", "is_active", "created_at"),
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<IntegrationSetting {self.type} active={self.is_active} id={self.id}>"
