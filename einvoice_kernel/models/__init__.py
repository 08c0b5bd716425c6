"""ORM models for the e-invoice kernel."""

from einvoice_kernel.models.integration_setting import (
    LHDN_INTEGRATION_TYPE,
    IntegrationSetting,
)
from einvoice_kernel.models.submission_record import (
    POLLABLE_STATUSES,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    SubmissionRecord,
    SubmissionStatus,
)
from einvoice_kernel.models.token_history import TokenHistory

__all__ = [
    "IntegrationSetting",
    "LHDN_INTEGRATION_TYPE",
    "POLLABLE_STATUSES",
    "SubmissionRecord",
    "SubmissionStatus",
    "TERMINAL_STATUSES",
    "TokenHistory",
    "VALID_TRANSITIONS",
]
