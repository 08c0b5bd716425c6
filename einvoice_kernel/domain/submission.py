"""
Submission DTOs -- what goes to the authority and what comes back.

Responsibility:
    ``SubmissionDocument`` packages one prepared invoice the way the
    MyInvois submission endpoint expects it (base64 body + SHA-256 hash).
    ``SubmissionResult`` is the caller-facing summary of a submit call.

Architecture position:
    Kernel > Domain -- pure data transfer objects.

Invariants enforced:
    - ``document_hash`` is the hex SHA-256 of the exact bytes that were
      base64-encoded into ``document``.
"""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any
from uuid import UUID


@unique
class DocumentFormat(str, Enum):
    JSON = "JSON"
    XML = "XML"


@dataclass(frozen=True)
class SubmissionDocument:
    """One invoice ready for ``POST /api/v1.0/documentsubmissions``."""

    invoice_number: str
    document: str
    document_hash: str
    format: DocumentFormat = DocumentFormat.JSON
    file_reference: str | None = None

    @classmethod
    def from_bytes(
        cls,
        invoice_number: str,
        raw: bytes,
        format: DocumentFormat = DocumentFormat.JSON,
        file_reference: str | None = None,
    ) -> SubmissionDocument:
        return cls(
            invoice_number=invoice_number,
            document=base64.b64encode(raw).decode("ascii"),
            document_hash=hashlib.sha256(raw).hexdigest(),
            format=format,
            file_reference=file_reference,
        )

    @classmethod
    def from_json(
        cls,
        invoice_number: str,
        payload: dict[str, Any] | str,
        file_reference: str | None = None,
    ) -> SubmissionDocument:
        """Minify a UBL JSON invoice and package it."""
        if isinstance(payload, str):
            payload = json.loads(payload)
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return cls.from_bytes(invoice_number, raw, DocumentFormat.JSON, file_reference)

    @classmethod
    def from_xml(
        cls,
        invoice_number: str,
        xml: str,
        file_reference: str | None = None,
    ) -> SubmissionDocument:
        return cls.from_bytes(
            invoice_number, xml.encode("utf-8"), DocumentFormat.XML, file_reference
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "format": self.format.value,
            "document": self.document,
            "documentHash": self.document_hash,
            "codeNumber": self.invoice_number,
        }


@dataclass(frozen=True)
class SubmissionResult:
    """
    Outcome of ``SubmissionClient.submit``.

    ``accepted`` is True when the authority accepted (or queued) the
    document; a False result carries the authority's ``error`` detail and
    the record is in ``rejected`` status.
    """

    record_id: UUID
    status: str
    accepted: bool
    attempts: int
    submission_uid: str | None = None
    document_uuid: str | None = None
    error: dict[str, Any] | None = None
