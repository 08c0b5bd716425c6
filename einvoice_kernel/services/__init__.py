"""Services for the e-invoice kernel (token lifecycle and submission)."""

from einvoice_kernel.services.status_tracker import StatusTracker
from einvoice_kernel.services.submission_client import SubmissionClient
from einvoice_kernel.services.token_acquirer import CredentialCheck, TokenAcquirer
from einvoice_kernel.services.token_session import TokenSessionManager
from einvoice_kernel.services.token_store import (
    AuditWriteResult,
    FileTokenTier,
    MemoryTokenTier,
    TokenHistoryRecorder,
    TokenLookup,
    TokenSource,
    TokenStore,
    TokenWriteResult,
)

__all__ = [
    "AuditWriteResult",
    "CredentialCheck",
    "FileTokenTier",
    "MemoryTokenTier",
    "StatusTracker",
    "SubmissionClient",
    "TokenAcquirer",
    "TokenHistoryRecorder",
    "TokenLookup",
    "TokenSessionManager",
    "TokenSource",
    "TokenStore",
    "TokenWriteResult",
]
