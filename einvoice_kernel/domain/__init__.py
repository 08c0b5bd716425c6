"""
Pure domain layer.

This module contains value objects and policies with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- HTTP

Time enters only through an injected Clock.
"""

from einvoice_kernel.domain.access_token import SAFETY_BUFFER, AccessToken
from einvoice_kernel.domain.backoff import BackoffPolicy, parse_retry_after
from einvoice_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from einvoice_kernel.domain.integration_config import (
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    ConfigSource,
    Environment,
    IntegrationConfig,
    RateLimitSettings,
    StaticConfigSource,
    normalize_base_url,
)
from einvoice_kernel.domain.lhdn_errors import (
    AuthorityErrorInfo,
    describe,
    parse_authority_error,
    parse_rejected_document,
)
from einvoice_kernel.domain.rate_limit import DEFAULT_ENDPOINT_RPM, RateLimiter
from einvoice_kernel.domain.submission import (
    DocumentFormat,
    SubmissionDocument,
    SubmissionResult,
)

__all__ = [
    "AccessToken",
    "AuthorityErrorInfo",
    "BackoffPolicy",
    "Clock",
    "ConfigSource",
    "DEFAULT_ENDPOINT_RPM",
    "DeterministicClock",
    "DocumentFormat",
    "Environment",
    "IntegrationConfig",
    "MAX_TIMEOUT_MS",
    "MIN_TIMEOUT_MS",
    "RateLimitSettings",
    "RateLimiter",
    "SAFETY_BUFFER",
    "SubmissionDocument",
    "StaticConfigSource",
    "SubmissionResult",
    "SystemClock",
    "describe",
    "normalize_base_url",
    "parse_authority_error",
    "parse_rejected_document",
    "parse_retry_after",
]
