"""
StatusPoller -- drives QUEUED/SUBMITTED records to their final status.

Responsibility:
    For each record still awaiting a verdict, asks the authority's Get
    Submission endpoint how its document fared and applies the answer
    through StatusTracker.  Invalid documents get their validation
    results attached from Get Document Details.

Architecture position:
    Services -- orchestration over SubmissionClient + StatusTracker.

Invariants enforced:
    - Status only moves through StatusTracker (so illegal moves are
      refused and logged there, never forced here).
    - One failing submission does not stop the pass; its error is
      counted and logged and the next record is polled.

Usage:
    poller = integration.status_poller(session)
    summary = poller.poll_once()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from einvoice_kernel.domain.lhdn_errors import AuthorityErrorInfo, parse_authority_error
from einvoice_kernel.exceptions import AuthError, AuthorityError
from einvoice_kernel.logging_config import LogContext, get_logger
from einvoice_kernel.models.submission_record import SubmissionRecord, SubmissionStatus
from einvoice_kernel.services.status_tracker import StatusTracker
from einvoice_kernel.services.submission_client import SubmissionClient

logger = get_logger("services.status_poller")


@dataclass
class PollSummary:
    """What one polling pass did."""

    polled: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    transitions: dict[str, str] = field(default_factory=dict)


def _document_entries(body: dict[str, Any]) -> list[dict[str, Any]]:
    for key in ("documentSummary", "result", "documents"):
        entries = body.get(key)
        if isinstance(entries, list):
            return [e for e in entries if isinstance(e, dict)]
    return []


def _match_entry(
    record: SubmissionRecord, entries: list[dict[str, Any]]
) -> dict[str, Any] | None:
    for entry in entries:
        if record.document_uuid and entry.get("uuid") == record.document_uuid:
            return entry
    for entry in entries:
        if entry.get("internalId") == record.invoice_number:
            return entry
    if len(entries) == 1:
        return entries[0]
    return None


def _validation_error(details: dict[str, Any]) -> AuthorityErrorInfo | None:
    results = details.get("validationResults") or {}
    steps = results.get("validationSteps") or []
    failed = [
        step.get("error")
        for step in steps
        if isinstance(step, dict) and step.get("error")
    ]
    if not failed:
        return None
    first = failed[0]
    info = parse_authority_error(first, default_message="Document failed validation")
    if len(failed) > 1 and not info.details:
        return AuthorityErrorInfo(
            code=info.code,
            message=info.message,
            user_message=info.user_message,
            target=info.target,
            details=[f for f in failed[1:] if isinstance(f, dict)],
        )
    return info


class StatusPoller:
    """Polls the authority for records in QUEUED or SUBMITTED."""

    def __init__(
        self,
        client: SubmissionClient,
        tracker: StatusTracker,
        batch_size: int = 100,
    ):
        self._client = client
        self._tracker = tracker
        self._batch_size = batch_size

    def poll_once(self) -> PollSummary:
        summary = PollSummary()
        records = self._tracker.list_pollable(limit=self._batch_size)

        by_submission: dict[str, list[SubmissionRecord]] = {}
        for record in records:
            by_submission.setdefault(record.submission_uid, []).append(record)

        for submission_uid, group in by_submission.items():
            with LogContext.operation(submission_uid=submission_uid):
                try:
                    body = self._client.get_submission(submission_uid)
                except (AuthError, AuthorityError) as exc:
                    summary.errors += len(group)
                    logger.warning(
                        "submission_poll_failed",
                        extra={"error_code": exc.code, "error": str(exc),
                               "records": len(group)},
                    )
                    continue

                entries = _document_entries(body)
                for record in group:
                    summary.polled += 1
                    if self._apply(record, entries, body):
                        summary.updated += 1
                        summary.transitions[str(record.id)] = record.status_str
                    else:
                        summary.unchanged += 1

        logger.info(
            "status_poll_completed",
            extra={"polled": summary.polled, "updated": summary.updated,
                   "unchanged": summary.unchanged, "errors": summary.errors},
        )
        return summary

    def _apply(
        self,
        record: SubmissionRecord,
        entries: list[dict[str, Any]],
        body: dict[str, Any],
    ) -> bool:
        entry = _match_entry(record, entries)
        if entry is None:
            logger.debug(
                "submission_document_not_listed",
                extra={"record_id": str(record.id),
                       "overall_status": body.get("overallStatus")},
            )
            return False

        status = str(entry.get("status") or "")
        document_uuid = entry.get("uuid")

        # A queued record must be accepted before any verdict applies.
        if (
            record.status_enum == SubmissionStatus.QUEUED
            and status.strip().lower() in ("valid", "invalid", "cancelled")
        ):
            self._tracker.apply_authority_status(
                record, "Submitted", document_uuid=document_uuid
            )

        error = None
        if status.strip().lower() == "invalid" and document_uuid:
            error = self._validation_error(document_uuid)

        return self._tracker.apply_authority_status(
            record,
            status,
            long_id=entry.get("longId") or None,
            document_uuid=document_uuid,
            error=error,
        )

    def _validation_error(self, document_uuid: str) -> AuthorityErrorInfo | None:
        try:
            details = self._client.get_document_details(document_uuid)
        except (AuthError, AuthorityError) as exc:
            logger.warning(
                "document_details_failed",
                extra={"document_uuid": document_uuid, "error_code": exc.code},
            )
            return None
        return _validation_error(details)
