"""
Typed Exception Hierarchy for the e-Invoice Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The LHDN integration has to tell apart failures that are retried
(throttling, timeouts, an unreachable authority) from failures that must be
shown to a user (bad credentials, a rejected document).  Callers branch on
the exception TYPE and read structured attributes; they never parse
message strings.

Example - WRONG way to handle errors:
    try:
        client.submit(document)
    except Exception as e:
        if "429" in str(e):  # FRAGILE - message might change
            back_off()

Example - RIGHT way:
    try:
        client.submit(document)
    except RateLimitedError as e:
        back_off(e.retry_after_ms)
    except UpstreamError as e:
        show_user(e.authority_code, e.message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from EInvoiceError:

    EInvoiceError (base)
    |
    +-- ConfigError
    |   +-- ConfigNotFoundError
    |   +-- ConfigInvalidError
    |
    +-- AuthError
    |
    +-- AuthorityError
    |   +-- TransientAuthorityError
    |   |   +-- RateLimitedError
    |   |   +-- AuthorityTimeoutError
    |   |   +-- AuthorityUnavailableError
    |   +-- UpstreamError
    |
    +-- SubmissionError
        +-- SubmissionRecordNotFoundError
        +-- InvalidStatusTransitionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|-------------------------------------------
Config        | CONFIG_NOT_FOUND             | No active LHDN configuration row
              | CONFIG_INVALID               | Settings unusable (no URL, no credentials)
--------------|------------------------------|-------------------------------------------
Auth          | AUTH_ERROR                   | Token exchange failed or HTTP 401
--------------|------------------------------|-------------------------------------------
Authority     | RATE_LIMITED                 | HTTP 429 from the authority (retried)
              | TIMEOUT                      | No response within configured timeout
              | AUTHORITY_UNAVAILABLE        | Connection failure or HTTP 5xx (retried)
              | UPSTREAM_ERROR               | HTTP 4xx business/validation rejection
--------------|------------------------------|-------------------------------------------
Submission    | SUBMISSION_RECORD_NOT_FOUND  | Record id / submission uid unknown
              | INVALID_STATUS_TRANSITION    | Strict transition outside the table

===============================================================================
HANDLING PATTERNS
===============================================================================

1. TRANSIENT vs TERMINAL:

    except TransientAuthorityError:
        # Already retried up to max_retries by SubmissionClient.
        # Record stays PENDING; safe to resubmit later.
    except UpstreamError as e:
        # Never retried. Surface the authority's own code/message.

2. AUTH FAILURES invalidate the token store before propagating, so the
   next call starts from a clean cache.
"""


class EInvoiceError(Exception):
    """
    Base exception for all e-invoice kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EINVOICE_ERROR"


# Configuration exceptions


class ConfigError(EInvoiceError):
    """Base exception for integration configuration errors."""

    code: str = "CONFIG_ERROR"


class ConfigNotFoundError(ConfigError):
    """No active configuration exists for the integration type."""

    code: str = "CONFIG_NOT_FOUND"

    def __init__(self, integration_type: str):
        self.integration_type = integration_type
        super().__init__(f"{integration_type} configuration not found")


class ConfigInvalidError(ConfigError):
    """Active configuration exists but cannot be used."""

    code: str = "CONFIG_INVALID"

    def __init__(self, reason: str, config_id: str | None = None):
        self.reason = reason
        self.config_id = config_id
        super().__init__(f"Invalid integration configuration: {reason}")


# Authentication exceptions


class AuthError(EInvoiceError):
    """Token exchange with the authority failed."""

    code: str = "AUTH_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        upstream_message: str | None = None,
    ):
        self.status_code = status_code
        self.upstream_message = upstream_message
        super().__init__(message)


# Authority call exceptions


class AuthorityError(EInvoiceError):
    """Base exception for failed calls to the authority API."""

    code: str = "AUTHORITY_ERROR"

    #: Whether SubmissionClient may retry the call under its backoff policy.
    retryable: bool = False


class TransientAuthorityError(AuthorityError):
    """Failure that is expected to clear on its own; retried with backoff."""

    code: str = "TRANSIENT_AUTHORITY_ERROR"
    retryable = True


class RateLimitedError(TransientAuthorityError):
    """Authority signalled throttling (HTTP 429)."""

    code: str = "RATE_LIMITED"

    def __init__(
        self,
        endpoint: str,
        retry_after_ms: int | None = None,
        attempts: int | None = None,
    ):
        self.endpoint = endpoint
        self.retry_after_ms = retry_after_ms
        self.attempts = attempts
        hint = f", retry after {retry_after_ms}ms" if retry_after_ms is not None else ""
        super().__init__(f"Rate limited by authority on {endpoint}{hint}")


class AuthorityTimeoutError(TransientAuthorityError):
    """No response from the authority within the configured timeout."""

    code: str = "TIMEOUT"

    def __init__(self, endpoint: str, timeout_ms: int, attempts: int | None = None):
        self.endpoint = endpoint
        self.timeout_ms = timeout_ms
        self.attempts = attempts
        super().__init__(
            f"Authority call to {endpoint} timed out after {timeout_ms}ms"
        )


class AuthorityUnavailableError(TransientAuthorityError):
    """Connection failure or server-side (5xx) error from the authority."""

    code: str = "AUTHORITY_UNAVAILABLE"

    def __init__(
        self,
        endpoint: str,
        reason: str,
        status_code: int | None = None,
        attempts: int | None = None,
    ):
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(f"Authority unavailable on {endpoint}: {reason}")


class UpstreamError(AuthorityError):
    """
    Authority rejected the request for business or validation reasons.

    Never retried automatically.  ``authority_code`` and ``message`` are the
    authority's own; ``user_message`` is the catalogue translation, if any.
    """

    code: str = "UPSTREAM_ERROR"

    def __init__(
        self,
        status_code: int,
        authority_code: str,
        message: str,
        details: list[dict] | None = None,
        user_message: str | None = None,
    ):
        self.status_code = status_code
        self.authority_code = authority_code
        self.message = message
        self.details = details or []
        self.user_message = user_message
        super().__init__(
            f"Authority rejected request (HTTP {status_code}, {authority_code}): {message}"
        )


# Submission tracking exceptions


class SubmissionError(EInvoiceError):
    """Base exception for submission tracking errors."""

    code: str = "SUBMISSION_ERROR"


class SubmissionRecordNotFoundError(SubmissionError):
    """No submission record matches the given key."""

    code: str = "SUBMISSION_RECORD_NOT_FOUND"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Submission record not found: {key}")


class InvalidStatusTransitionError(SubmissionError):
    """Requested status transition is not in the transition table."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, record_id: str, from_status: str, to_status: str):
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for submission {record_id}: {from_status} -> {to_status}"
        )
