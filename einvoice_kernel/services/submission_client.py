"""
SubmissionClient -- bearer-authenticated calls to the MyInvois document API.

Responsibility:
    Submits prepared documents, reads submission and document status, and
    cancels documents.  Every call goes through one request loop that
    applies the BackoffPolicy built from the active configuration.

Architecture position:
    Kernel > Services -- imperative shell around httpx.
    Uses TokenSessionManager for the bearer token, RateLimiter for pacing
    and StatusTracker for every submission outcome.

Invariants enforced:
    - A SubmissionRecord exists (PENDING) before the first network call.
    - Only transient failures (429, timeout, 5xx, connection errors) are
      retried, and never more than ``max_attempts`` calls in total.
    - 4xx responses become UpstreamError immediately and are never retried.
    - Failures leave the record's status unchanged; only an explicit
      authority response moves it.

Failure modes:
    - RateLimitedError / AuthorityTimeoutError / AuthorityUnavailableError
      once the retry budget is spent.
    - UpstreamError on a 4xx business rejection.
    - AuthError when no token can be obtained, or on HTTP 401 (the token
      store is invalidated first).

Audit relevance:
    Every attempt is counted on the record and every failure's detail is
    stored verbatim; retries are logged with attempt number and delay.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import Any

import httpx

from einvoice_kernel.domain.backoff import DEFAULT_JITTER_MS, BackoffPolicy, parse_retry_after
from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.integration_config import ConfigSource, IntegrationConfig
from einvoice_kernel.domain.lhdn_errors import parse_authority_error, parse_rejected_document
from einvoice_kernel.domain.rate_limit import RateLimiter
from einvoice_kernel.domain.submission import SubmissionDocument, SubmissionResult
from einvoice_kernel.exceptions import (
    AuthError,
    AuthorityError,
    AuthorityTimeoutError,
    AuthorityUnavailableError,
    InvalidStatusTransitionError,
    RateLimitedError,
    UpstreamError,
)
from einvoice_kernel.logging_config import LogContext, get_logger
from einvoice_kernel.models.submission_record import SubmissionRecord, SubmissionStatus
from einvoice_kernel.services.status_tracker import StatusTracker
from einvoice_kernel.services.token_session import TokenSessionManager

logger = get_logger("services.submission_client")

SUBMISSIONS_PATH = "/api/v1.0/documentsubmissions"
DOCUMENT_DETAILS_PATH = "/api/v1.0/documents/{uuid}/details"
DOCUMENT_STATE_PATH = "/api/v1.0/documents/state/{uuid}/state"

SUBMISSION_PAGE_SIZE = 100

# Rate limiter keys, one per authority endpoint.
SUBMIT_DOCUMENTS = "submit_documents"
GET_SUBMISSION = "get_submission"
GET_DOCUMENT_DETAILS = "get_document_details"
CANCEL_DOCUMENT = "cancel_document"


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _pick_document(entries: list[dict[str, Any]], invoice_number: str) -> dict[str, Any]:
    for entry in entries:
        if entry.get("invoiceCodeNumber") == invoice_number:
            return entry
    return entries[0]


class SubmissionClient:
    """
    Talks to the authority's document endpoints on behalf of one session.

    Contract:
        Request-scoped: the StatusTracker is bound to the caller's
        SQLAlchemy session; the http client, token manager and rate
        limiter are shared process-wide.

    Usage:
        client = SubmissionClient(http, tokens, config_source, tracker, clock)
        result = client.submit(SubmissionDocument.from_json("INV-1", ubl))
    """

    def __init__(
        self,
        http_client: httpx.Client,
        tokens: TokenSessionManager,
        config_source: ConfigSource,
        tracker: StatusTracker,
        clock: Clock,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        jitter_ms: int = DEFAULT_JITTER_MS,
    ):
        self._http = http_client
        self._tokens = tokens
        self._config_source = config_source
        self._tracker = tracker
        self._clock = clock
        self._limiter = rate_limiter
        self._sleep = sleep
        self._rng = rng
        self._jitter_ms = jitter_ms

    # ------------------------------------------------------------------
    # Request loop
    # ------------------------------------------------------------------

    def _min_interval_ms(self, endpoint: str, config: IntegrationConfig) -> int:
        if endpoint == SUBMIT_DOCUMENTS:
            return config.rate_limit.min_interval_ms
        if self._limiter is not None:
            return self._limiter.interval_ms(endpoint)
        return 0

    def _classify(
        self, endpoint: str, response: httpx.Response
    ) -> AuthorityError | AuthError | None:
        status = response.status_code
        if 200 <= status < 300:
            return None
        if status == 401:
            self._tokens.invalidate()
            info = parse_authority_error(_json_body(response), "Unauthorized")
            return AuthError(
                f"Authority refused the access token on {endpoint}",
                status_code=status,
                upstream_message=info.message,
            )
        if status == 429:
            now = self._clock.now()
            retry_after = parse_retry_after(response.headers.get("Retry-After"), now)
            if retry_after is None:
                retry_after = parse_retry_after(
                    response.headers.get("X-Rate-Limit-Reset"), now
                )
            return RateLimitedError(endpoint, retry_after_ms=retry_after)
        if status >= 500:
            return AuthorityUnavailableError(
                endpoint, f"HTTP {status}", status_code=status
            )
        info = parse_authority_error(_json_body(response))
        return UpstreamError(
            status_code=status,
            authority_code=info.code,
            message=info.message,
            details=info.details,
            user_message=info.user_message,
        )

    def _request(
        self,
        endpoint: str,
        method: str,
        path: str,
        config: IntegrationConfig,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        on_attempt: Callable[[], Any] | None = None,
    ) -> httpx.Response:
        """
        Send one logical request, retrying transient failures.

        Raises:
            AuthError: No token, or HTTP 401.
            UpstreamError: HTTP 4xx other than 401/429.
            TransientAuthorityError: Retry budget exhausted.
        """
        policy = BackoffPolicy.from_config(config, jitter_ms=self._jitter_ms)
        min_interval = self._min_interval_ms(endpoint, config)
        url = config.endpoint(path)
        attempt = 0

        while True:
            attempt += 1
            if self._limiter is not None:
                self._limiter.wait_for_slot(
                    endpoint,
                    interval_ms=min_interval if endpoint == SUBMIT_DOCUMENTS else None,
                )
            if on_attempt is not None:
                on_attempt()

            token = self._tokens.get_token()
            headers = {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Accept-Language": "en",
            }
            if config.tin:
                headers["onbehalfof"] = config.tin

            try:
                response = self._http.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=config.timeout_seconds,
                )
                error = self._classify(endpoint, response)
            except httpx.TimeoutException:
                error = AuthorityTimeoutError(endpoint, config.timeout_ms)
            except httpx.TransportError as exc:
                error = AuthorityUnavailableError(endpoint, str(exc) or type(exc).__name__)

            if error is None:
                logger.debug(
                    "authority_call_succeeded",
                    extra={"endpoint": endpoint, "attempt": attempt,
                           "status_code": response.status_code},
                )
                return response

            if not getattr(error, "retryable", False):
                raise error

            error.attempts = attempt
            if not policy.should_retry(attempt):
                logger.warning(
                    "authority_retries_exhausted",
                    extra={"endpoint": endpoint, "attempts": attempt,
                           "error_code": error.code},
                )
                raise error

            floor = min_interval
            if isinstance(error, RateLimitedError) and error.retry_after_ms:
                floor = max(floor, error.retry_after_ms)
            delay_ms = policy.delay_ms(attempt, floor_ms=floor, rng=self._rng)
            logger.info(
                "authority_call_retrying",
                extra={
                    "endpoint": endpoint,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay_ms": delay_ms,
                    "error_code": error.code,
                },
            )
            self._sleep(delay_ms / 1000)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        document: SubmissionDocument,
        record: SubmissionRecord | None = None,
    ) -> SubmissionResult:
        """
        Submit one document and record the outcome.

        Pass ``record`` to resubmit a document whose earlier attempt left
        it PENDING; otherwise a new PENDING record is opened.

        Raises:
            RateLimitedError, AuthorityTimeoutError, AuthorityUnavailableError,
            UpstreamError, AuthError: the record stays PENDING with the
            failure stored on it.
        """
        config = self._config_source.get_active_config()
        if record is None:
            record = self._tracker.open_record(
                document.invoice_number, document.file_reference
            )

        with LogContext.operation(
            invoice_number=document.invoice_number, record_id=str(record.id)
        ):
            logger.info(
                "submission_started",
                extra={"format": document.format.value,
                       "document_hash": document.document_hash},
            )
            try:
                response = self._request(
                    SUBMIT_DOCUMENTS,
                    "POST",
                    SUBMISSIONS_PATH,
                    config,
                    json={"documents": [document.to_payload()]},
                    on_attempt=lambda: self._tracker.record_attempt(record),
                )
            except (AuthError, AuthorityError) as exc:
                self._tracker.record_failure(record, exc)
                raise

            return self._record_response(record, document, response)

    def _record_response(
        self,
        record: SubmissionRecord,
        document: SubmissionDocument,
        response: httpx.Response,
    ) -> SubmissionResult:
        body = _json_body(response)
        if not isinstance(body, dict):
            body = {}
        submission_uid = body.get("submissionUid")
        accepted = body.get("acceptedDocuments") or []
        rejected = body.get("rejectedDocuments") or []

        if accepted:
            entry = _pick_document(accepted, document.invoice_number)
            self._tracker.mark_submitted(record, submission_uid, entry.get("uuid"))
            logger.info(
                "submission_accepted",
                extra={"submission_uid": submission_uid,
                       "document_uuid": entry.get("uuid"),
                       "attempts": record.attempt_count},
            )
            return SubmissionResult(
                record_id=record.id,
                status=SubmissionStatus.SUBMITTED.value,
                accepted=True,
                attempts=record.attempt_count,
                submission_uid=submission_uid,
                document_uuid=entry.get("uuid"),
            )

        if rejected:
            info = parse_rejected_document(
                _pick_document(rejected, document.invoice_number)
            )
            self._tracker.mark_rejected(record, info, submission_uid)
            logger.warning(
                "submission_rejected",
                extra={"submission_uid": submission_uid,
                       "authority_code": info.code,
                       "authority_message": info.message},
            )
            return SubmissionResult(
                record_id=record.id,
                status=SubmissionStatus.REJECTED.value,
                accepted=False,
                attempts=record.attempt_count,
                submission_uid=submission_uid,
                error=info.as_detail(),
            )

        if submission_uid:
            self._tracker.mark_queued(record, submission_uid)
            logger.info("submission_queued", extra={"submission_uid": submission_uid})
            return SubmissionResult(
                record_id=record.id,
                status=SubmissionStatus.QUEUED.value,
                accepted=True,
                attempts=record.attempt_count,
                submission_uid=submission_uid,
            )

        error = UpstreamError(
            status_code=response.status_code,
            authority_code="UNEXPECTED_RESPONSE",
            message="Submission response carried no submissionUid or document lists",
        )
        self._tracker.record_failure(record, error)
        raise error

    # ------------------------------------------------------------------
    # Status and cancellation
    # ------------------------------------------------------------------

    def get_submission(self, submission_uid: str) -> dict[str, Any]:
        """Raw Get Submission body (``overallStatus``, ``documentSummary``...)."""
        config = self._config_source.get_active_config()
        response = self._request(
            GET_SUBMISSION,
            "GET",
            f"{SUBMISSIONS_PATH}/{submission_uid}",
            config,
            params={"pageNo": 1, "pageSize": SUBMISSION_PAGE_SIZE},
        )
        body = _json_body(response)
        return body if isinstance(body, dict) else {}

    def get_document_details(self, document_uuid: str) -> dict[str, Any]:
        """Raw Get Document Details body, including ``validationResults``."""
        config = self._config_source.get_active_config()
        response = self._request(
            GET_DOCUMENT_DETAILS,
            "GET",
            DOCUMENT_DETAILS_PATH.format(uuid=document_uuid),
            config,
        )
        body = _json_body(response)
        return body if isinstance(body, dict) else {}

    def cancel_document(self, document_uuid: str, reason: str) -> dict[str, Any]:
        """
        Ask the authority to cancel a submitted document.

        When a local record tracks the document it must be SUBMITTED; any
        other status is refused before the authority is called, so local
        and authority state cannot drift apart.  Documents with no local
        record are cancelled at the authority only.

        Raises:
            InvalidStatusTransitionError: the local record cannot move to
                CANCELLED.
        """
        record = self._tracker.find_by_document_uuid(document_uuid)
        record_id = str(record.id) if record is not None else None
        with LogContext.operation(record_id=record_id):
            if record is not None and not self._tracker.check_transition(
                record, SubmissionStatus.CANCELLED
            ):
                raise InvalidStatusTransitionError(
                    record_id, record.status_str, SubmissionStatus.CANCELLED.value
                )

            config = self._config_source.get_active_config()
            response = self._request(
                CANCEL_DOCUMENT,
                "PUT",
                DOCUMENT_STATE_PATH.format(uuid=document_uuid),
                config,
                json={"status": "cancelled", "reason": reason},
            )
            logger.info(
                "document_cancelled",
                extra={"document_uuid": document_uuid, "reason": reason,
                       "tracked": record is not None},
            )
            if record is not None:
                self._tracker.mark_cancelled(record, reason)
        body = _json_body(response)
        return body if isinstance(body, dict) else {}
