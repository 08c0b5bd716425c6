"""
Module: einvoice_kernel.models.token_history
Responsibility: Append-only audit rows for every access token issued.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are inserted, never updated or deleted.  Invalidating the token
      cache leaves history untouched.
"""

from datetime import datetime

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import Base, UTCDateTime


class TokenHistory(Base):
    """One token the authority issued to this process."""

    __tablename__ = "token_history"

    __table_args__ = (
        Index("idx_token_history_created", "created_at"),
    )

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expiry_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<TokenHistory expires={self.expiry_time.isoformat()}>"
