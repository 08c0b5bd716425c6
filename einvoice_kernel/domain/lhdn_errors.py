"""
LHDN error catalogue -- authority error codes to human-readable messages.

Responsibility:
    Normalises the several error envelopes the MyInvois API returns into
    one ``AuthorityErrorInfo`` and attaches a plain-language message for
    the codes the portal knows about.  The authority's own code and message
    are always preserved; the catalogue only adds ``user_message``.

Architecture position:
    Kernel > Domain -- pure lookup and parsing, no I/O.

Envelopes handled:
    {"error": {"code", "message", "details": [...]}}
    {"code", "message", "details": [...]}
    rejectedDocuments[n] = {"invoiceCodeNumber", "error": {...}}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

LHDN_ERROR_MESSAGES: dict[str, str] = {
    "DS302": "This document has already been submitted to LHDN. Please check the document status in the LHDN portal.",
    "CF321": "Document issue date is invalid. Documents must be submitted within 7 days of issuance.",
    "CF364": "Invalid item classification code. Please ensure all items have valid classification codes.",
    "CF366": "Invalid tax type. Must be one of: Sales Tax (01), Service Tax (02), Tourism Tax (03), High-Value Goods Tax (04), Low Value Goods Tax (05), Not Applicable (06), or Exempt (E).",
    "CF367": 'For tax type "Not Applicable (06)", all tax amounts and rates must be zero.',
    "CF368": "For tax exemption, tax amount and rate must be zero.",
    "CF369": "Tax exemption reason is required when using tax type E.",
    "CF373": "Tax inclusive amount must match the sum of tax exclusive amount plus total tax.",
    "CF401": "Tax calculation error. Please verify all tax amounts and calculations in your document.",
    "CF402": "Currency error. Please check that all monetary values use the correct currency code.",
    "CF403": "Invalid tax code. Please verify the tax codes used in your document.",
    "CF404": "Invalid identification. Please check all party identification numbers (TIN, BRN, etc.).",
    "CF405": "Invalid party information. Please verify supplier/customer details are complete and valid.",
    "CF410": "The supplier phone number format is invalid.",
    "CF414": "The supplier phone number is too short.",
    "CF415": "The buyer phone number format is invalid.",
    "AUTH001": "Authentication failure. Your session may have expired, please try logging in again.",
    "AUTH003": "Unauthorized access. Your account does not have permission to submit this document.",
    "DUPLICATE_SUBMISSION": "This document has already been submitted or is being processed.",
    "E-INVOICE-TIN-VALIDATION-PARTY-VALIDATION": "TIN validation failed. The document TIN doesn't match with your authenticated TIN.",
    "INVALID_PARAMETER": "Invalid parameters provided. Please check your document formatting.",
    "TIN_MISMATCH": "The Tax Identification Number (TIN) in the document does not match the TIN of the authenticated user.",
    "SYSTEM_ERROR": "LHDN system is currently experiencing technical issues. Please try again later or contact LHDN support.",
    "VALIDATION_ERROR": "Document validation failed. Please review the document and correct all errors.",
}

MISSING_TAX_TOTAL_MESSAGE = (
    "Missing tax information. Please ensure all line items have valid tax details."
)

UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class AuthorityErrorInfo:
    """One authority error, normalised."""

    code: str
    message: str
    user_message: str | None = None
    target: str | None = None
    details: list[dict[str, Any]] = field(default_factory=list)

    def as_detail(self) -> dict[str, Any]:
        """JSON-safe form stored on a submission record."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "target": self.target,
            "details": self.details,
        }


def describe(code: str | None) -> str | None:
    """Human-readable message for an authority code, or None if uncatalogued."""
    if not code:
        return None
    return LHDN_ERROR_MESSAGES.get(code)


def _user_message(code: str, message: str, details: list[dict[str, Any]]) -> str | None:
    text = " ".join([message] + [str(d.get("message", "")) for d in details])
    if '"TaxTotal": []' in text or "TaxTotal is required" in text:
        return MISSING_TAX_TOTAL_MESSAGE
    known = describe(code)
    if known:
        return known
    # Nested detail codes often carry the specific CFxxx rule.
    for detail in details:
        known = describe(detail.get("code"))
        if known:
            return known
    return None


def parse_authority_error(
    body: Any,
    default_message: str = "Request rejected by LHDN",
    target: str | None = None,
) -> AuthorityErrorInfo:
    """Normalise any MyInvois error envelope; tolerant of missing fields."""
    if not isinstance(body, dict):
        message = str(body) if body else default_message
        return AuthorityErrorInfo(
            code=UNKNOWN_ERROR_CODE, message=message, target=target
        )

    envelope = body.get("error") if isinstance(body.get("error"), dict) else body
    code = str(envelope.get("code") or body.get("code") or UNKNOWN_ERROR_CODE)
    message = str(
        envelope.get("message")
        or body.get("message")
        or envelope.get("error")
        or default_message
    )
    raw_details = envelope.get("details") or body.get("details") or []
    if isinstance(raw_details, dict):
        raw_details = [raw_details]
    elif not isinstance(raw_details, list):
        raw_details = [{"message": str(raw_details)}]
    details = [d if isinstance(d, dict) else {"message": str(d)} for d in raw_details]

    return AuthorityErrorInfo(
        code=code,
        message=message,
        user_message=_user_message(code, message, details),
        target=target or envelope.get("target") or body.get("invoiceCodeNumber"),
        details=details,
    )


def parse_rejected_document(rejected: dict[str, Any]) -> AuthorityErrorInfo:
    """Normalise one ``rejectedDocuments`` entry of a submission response."""
    return parse_authority_error(
        rejected.get("error") or rejected,
        default_message="Document rejected by LHDN",
        target=rejected.get("invoiceCodeNumber"),
    )
