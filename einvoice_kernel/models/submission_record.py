"""
Module: einvoice_kernel.models.submission_record
Responsibility: ORM persistence for one document submission and its
    lifecycle against the authority.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status moves only along VALID_TRANSITIONS (enforced by StatusTracker).
    - Initial status is PENDING, assigned before the first network call.
    - Records are never deleted; a newer status supersedes an older one.

Failure modes:
    - An out-of-order move is refused by StatusTracker and the row is
      left as it was.

Audit relevance:
    attempt_count records every authority call made for the document, and
    error_code/error_detail carry the most recent failure verbatim from the
    authority (or the transport) until a successful transition clears them.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import Base, UTCDateTime


class SubmissionStatus(str, Enum):
    """
    Lifecycle of a submitted e-invoice.

    State machine:
        PENDING → QUEUED | SUBMITTED | REJECTED
        QUEUED → SUBMITTED | REJECTED
        SUBMITTED → VALID | INVALID | CANCELLED
        VALID, INVALID, CANCELLED, REJECTED: terminal
    """

    PENDING = "pending"        # Created locally, no authority decision yet
    QUEUED = "queued"          # Authority took the batch, no per-document verdict yet
    SUBMITTED = "submitted"    # Accepted for validation, has a document UUID
    VALID = "valid"
    INVALID = "invalid"
    CANCELLED = "cancelled"
    REJECTED = "rejected"      # Refused at submission time

    @classmethod
    def from_authority(cls, value: str) -> "SubmissionStatus":
        """Map an authority status string (``Valid``, ``InProgress``...) to ours."""
        normalized = (value or "").strip().lower()
        if normalized in _AUTHORITY_ALIASES:
            return _AUTHORITY_ALIASES[normalized]
        return cls(normalized)


_AUTHORITY_ALIASES: dict[str, SubmissionStatus] = {
    "inprogress": SubmissionStatus.SUBMITTED,
    "in progress": SubmissionStatus.SUBMITTED,
    "partiallyvalid": SubmissionStatus.SUBMITTED,
    "canceled": SubmissionStatus.CANCELLED,
}


# Allowed state transitions (from → set of valid targets)
VALID_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset({
        SubmissionStatus.QUEUED, SubmissionStatus.SUBMITTED, SubmissionStatus.REJECTED,
    }),
    SubmissionStatus.QUEUED: frozenset({
        SubmissionStatus.SUBMITTED, SubmissionStatus.REJECTED,
    }),
    SubmissionStatus.SUBMITTED: frozenset({
        SubmissionStatus.VALID, SubmissionStatus.INVALID, SubmissionStatus.CANCELLED,
    }),
    # Terminal states
    SubmissionStatus.VALID: frozenset(),
    SubmissionStatus.INVALID: frozenset(),
    SubmissionStatus.CANCELLED: frozenset(),
    SubmissionStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[SubmissionStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

POLLABLE_STATUSES: frozenset[SubmissionStatus] = frozenset({
    SubmissionStatus.QUEUED, SubmissionStatus.SUBMITTED,
})


class SubmissionRecord(Base):
    """
    One document's submission to the authority.

    Guarantees:
        - status is always a SubmissionStatus value.
        - status_changed_at moves only when status moves.
    """

    __tablename__ = "submission_records"

    __table_args__ = (
        Index("idx_submission_status", "status"),
        Index("idx_submission_invoice", "invoice_number"),
        Index("idx_submission_uid", "submission_uid"),
        Index("idx_submission_document_uuid", "document_uuid"),
    )

    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)

    # Source file or batch the invoice came from
    file_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Authority-assigned identifiers
    submission_uid: Mapped[str | None] = mapped_column(String(100), nullable=True)
    document_uuid: Mapped[str | None] = mapped_column(String(100), nullable=True)
    long_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[SubmissionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SubmissionStatus.PENDING.value,
    )

    attempt_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_detail: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Reason given when the document was cancelled
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status_changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    @property
    def status_enum(self) -> SubmissionStatus:
        """Return status as SubmissionStatus enum (normalizes raw DB strings)."""
        if isinstance(self.status, SubmissionStatus):
            return self.status
        return SubmissionStatus(self.status)

    @property
    def status_str(self) -> str:
        return self.status_enum.value

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    def can_transition_to(self, new_status: SubmissionStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status_enum, frozenset())

    def __repr__(self) -> str:
        return (
            f"<SubmissionRecord {self.invoice_number} "
            f"status={self.status_str} attempts={self.attempt_count}>"
        )
