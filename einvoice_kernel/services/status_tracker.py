"""
StatusTracker -- submission record lifecycle management.

Responsibility:
    Creates a SubmissionRecord before the first authority call and moves
    it through PENDING, QUEUED, SUBMITTED, VALID, INVALID, CANCELLED and
    REJECTED as explicit authority responses arrive.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by SubmissionClient after every submission outcome and by
    StatusPoller when the authority reports a later verdict.

Invariants enforced:
    - Only transitions listed in ``VALID_TRANSITIONS`` are applied.  Any
      other request is logged as ``status_transition_rejected`` and the
      record is left exactly as it was.
    - Network and timeout failures never transition a record; they only
      bump ``attempt_count`` and store the failure detail.
    - A successful transition to a non-failure status clears
      ``error_code`` / ``error_detail``.

Failure modes:
    - SubmissionRecordNotFoundError from ``get()``.
    - InvalidStatusTransitionError only when ``transition(strict=True)``.

Audit relevance:
    Every transition (applied or refused) and every failed attempt is
    logged with the record id, invoice number and both statuses.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.lhdn_errors import AuthorityErrorInfo
from einvoice_kernel.exceptions import (
    AuthError,
    AuthorityUnavailableError,
    AuthorityTimeoutError,
    InvalidStatusTransitionError,
    RateLimitedError,
    SubmissionRecordNotFoundError,
    UpstreamError,
)
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.models.submission_record import (
    POLLABLE_STATUSES,
    SubmissionRecord,
    SubmissionStatus,
)

logger = get_logger("services.status_tracker")

# Targets that represent a failure verdict; their error detail is kept.
_FAILURE_TARGETS = frozenset({SubmissionStatus.REJECTED, SubmissionStatus.INVALID})


def error_detail_for(error: Exception) -> dict[str, Any]:
    """JSON-safe description of a failed authority call."""
    detail: dict[str, Any] = {
        "code": getattr(error, "code", type(error).__name__),
        "message": str(error),
    }
    if isinstance(error, UpstreamError):
        detail.update(
            status_code=error.status_code,
            authority_code=error.authority_code,
            authority_message=error.message,
            user_message=error.user_message,
            details=error.details,
        )
    elif isinstance(error, RateLimitedError):
        detail.update(retry_after_ms=error.retry_after_ms, attempts=error.attempts)
    elif isinstance(error, AuthorityTimeoutError):
        detail.update(timeout_ms=error.timeout_ms, attempts=error.attempts)
    elif isinstance(error, AuthorityUnavailableError):
        detail.update(status_code=error.status_code, attempts=error.attempts)
    elif isinstance(error, AuthError):
        detail.update(
            status_code=error.status_code,
            upstream_message=error.upstream_message,
        )
    return detail


class StatusTracker:
    """
    Service for recording submission outcomes.

    Contract:
        Owns every write to ``submission_records``.  All methods flush
        within the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT talk to the authority (that is SubmissionClient).

    Usage:
        tracker = StatusTracker(session, clock)
        record = tracker.open_record("INV-001", file_reference="batch-7.json")
        tracker.record_attempt(record)
        tracker.mark_submitted(record, submission_uid, document_uuid)
    """

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def open_record(
        self,
        invoice_number: str,
        file_reference: str | None = None,
    ) -> SubmissionRecord:
        """Create a PENDING record before the first network call."""
        now = self._clock.now()
        record = SubmissionRecord(
            invoice_number=invoice_number,
            file_reference=file_reference,
            status=SubmissionStatus.PENDING.value,
            attempt_count=0,
            created_at=now,
            status_changed_at=now,
        )
        self._session.add(record)
        self._session.flush()
        logger.info(
            "submission_record_opened",
            extra={
                "record_id": str(record.id),
                "invoice_number": invoice_number,
                "file_reference": file_reference,
            },
        )
        return record

    def get(self, record_id: UUID | str) -> SubmissionRecord:
        if isinstance(record_id, str):
            try:
                record_id = UUID(record_id)
            except ValueError:
                raise SubmissionRecordNotFoundError(record_id) from None
        record = self._session.get(SubmissionRecord, record_id)
        if record is None:
            raise SubmissionRecordNotFoundError(str(record_id))
        return record

    def find_by_submission_uid(self, submission_uid: str) -> list[SubmissionRecord]:
        stmt = (
            select(SubmissionRecord)
            .where(SubmissionRecord.submission_uid == submission_uid)
            .order_by(SubmissionRecord.created_at)
        )
        return list(self._session.scalars(stmt))

    def find_by_document_uuid(self, document_uuid: str) -> SubmissionRecord | None:
        stmt = (
            select(SubmissionRecord)
            .where(SubmissionRecord.document_uuid == document_uuid)
            .order_by(SubmissionRecord.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_pollable(self, limit: int = 100) -> list[SubmissionRecord]:
        """Records still awaiting an authority verdict, oldest change first."""
        stmt = (
            select(SubmissionRecord)
            .where(SubmissionRecord.status.in_([s.value for s in POLLABLE_STATUSES]))
            .where(SubmissionRecord.submission_uid.is_not(None))
            .order_by(SubmissionRecord.status_changed_at)
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    # ------------------------------------------------------------------
    # Attempts and failures (never transition)
    # ------------------------------------------------------------------

    def record_attempt(self, record: SubmissionRecord) -> int:
        """Count one authority call for the record; returns the new count."""
        record.attempt_count = (record.attempt_count or 0) + 1
        self._session.flush()
        return record.attempt_count

    def record_failure(self, record: SubmissionRecord, error: Exception) -> None:
        """Store a failed call's detail; status is left unchanged."""
        detail = error_detail_for(error)
        record.error_code = detail["code"]
        record.error_detail = detail
        self._session.flush()
        logger.warning(
            "submission_attempt_failed",
            extra={
                "record_id": str(record.id),
                "invoice_number": record.invoice_number,
                "status": record.status_str,
                "attempt_count": record.attempt_count,
                "error_code": detail["code"],
            },
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def check_transition(self, record: SubmissionRecord, target: SubmissionStatus) -> bool:
        """True if the table allows the move; a refused move is logged."""
        if record.can_transition_to(target):
            return True
        logger.warning(
            "status_transition_rejected",
            extra={
                "record_id": str(record.id),
                "invoice_number": record.invoice_number,
                "from_status": record.status_str,
                "to_status": target.value,
            },
        )
        return False

    def transition(
        self,
        record: SubmissionRecord,
        target: SubmissionStatus,
        *,
        strict: bool = False,
        **fields: Any,
    ) -> bool:
        """
        Move ``record`` to ``target`` if the transition table allows it.

        ``fields`` are assigned onto the record only when the transition
        is applied.

        Returns:
            True if applied; False if refused (record unchanged).

        Raises:
            InvalidStatusTransitionError: refused and ``strict`` is True.
        """
        current = record.status_enum
        if not self.check_transition(record, target):
            if strict:
                raise InvalidStatusTransitionError(
                    str(record.id), current.value, target.value
                )
            return False

        for name, value in fields.items():
            setattr(record, name, value)
        record.status = target.value
        record.status_changed_at = self._clock.now()
        if target not in _FAILURE_TARGETS:
            record.error_code = None
            record.error_detail = None
        self._session.flush()

        logger.info(
            "status_transitioned",
            extra={
                "record_id": str(record.id),
                "invoice_number": record.invoice_number,
                "from_status": current.value,
                "to_status": target.value,
                "submission_uid": record.submission_uid,
            },
        )
        return True

    def mark_submitted(
        self,
        record: SubmissionRecord,
        submission_uid: str,
        document_uuid: str | None,
        long_id: str | None = None,
    ) -> bool:
        fields: dict[str, Any] = {
            "submission_uid": submission_uid,
            "document_uuid": document_uuid,
        }
        if long_id:
            fields["long_id"] = long_id
        return self.transition(record, SubmissionStatus.SUBMITTED, **fields)

    def mark_queued(self, record: SubmissionRecord, submission_uid: str) -> bool:
        return self.transition(
            record, SubmissionStatus.QUEUED, submission_uid=submission_uid
        )

    def mark_rejected(
        self,
        record: SubmissionRecord,
        error: AuthorityErrorInfo,
        submission_uid: str | None = None,
    ) -> bool:
        fields: dict[str, Any] = {
            "error_code": error.code,
            "error_detail": error.as_detail(),
        }
        if submission_uid:
            fields["submission_uid"] = submission_uid
        return self.transition(record, SubmissionStatus.REJECTED, **fields)

    def mark_cancelled(self, record: SubmissionRecord, reason: str) -> bool:
        return self.transition(
            record, SubmissionStatus.CANCELLED, cancel_reason=reason
        )

    def apply_authority_status(
        self,
        record: SubmissionRecord,
        authority_status: str,
        long_id: str | None = None,
        document_uuid: str | None = None,
        error: AuthorityErrorInfo | None = None,
    ) -> bool:
        """
        Apply a status string reported by the authority (``Valid``,
        ``Invalid``, ``Cancelled``, ``Submitted``...).

        A report matching the current status is a no-op that returns False
        without a warning; unknown strings are logged and ignored.
        """
        try:
            target = SubmissionStatus.from_authority(authority_status)
        except ValueError:
            logger.warning(
                "authority_status_unknown",
                extra={
                    "record_id": str(record.id),
                    "authority_status": authority_status,
                },
            )
            return False

        if target == record.status_enum:
            updated = False
            if long_id and record.long_id != long_id:
                record.long_id = long_id
                updated = True
            if document_uuid and record.document_uuid != document_uuid:
                record.document_uuid = document_uuid
                updated = True
            if updated:
                self._session.flush()
            return False

        fields: dict[str, Any] = {}
        if long_id:
            fields["long_id"] = long_id
        if document_uuid:
            fields["document_uuid"] = document_uuid
        if error is not None and target in _FAILURE_TARGETS:
            fields["error_code"] = error.code
            fields["error_detail"] = error.as_detail()
        return self.transition(record, target, **fields)
