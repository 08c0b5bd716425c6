"""
BackoffPolicy -- the single retry policy for authority calls.

Responsibility:
    Decides how many attempts a call may make and how long to wait between
    them.  SubmissionClient applies it uniformly to every endpoint; no
    caller re-implements its own retry loop.

Architecture position:
    Kernel > Domain -- pure functional core.  Randomness (jitter) comes
    from an injected ``random.Random`` so delays are reproducible in tests.

Invariants enforced:
    - ``max_attempts >= 1``: the first attempt always happens.
    - Every computed delay is ``<= max_delay_ms``.
    - Delays grow exponentially: base * 2 ** (attempt - 1), plus jitter.

Failure modes:
    - ValueError on construction with non-positive attempts or negative
      delays.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from einvoice_kernel.domain.integration_config import IntegrationConfig

DEFAULT_JITTER_MS = 250


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Bounded exponential backoff with jitter.

    ``max_attempts`` counts every attempt including the first, so a policy
    with ``max_attempts=3`` makes at most three calls.
    """

    max_attempts: int
    base_delay_ms: int
    max_delay_ms: int
    jitter_ms: int = DEFAULT_JITTER_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0 or self.jitter_ms < 0:
            raise ValueError("Backoff delays must be non-negative")

    @classmethod
    def from_config(cls, config: IntegrationConfig, jitter_ms: int = DEFAULT_JITTER_MS) -> BackoffPolicy:
        """Policy for the active integration config (one attempt when retry is off)."""
        attempts = config.max_retries if config.retry_enabled else 1
        return cls(
            max_attempts=max(1, attempts),
            base_delay_ms=config.retry_delay_ms,
            max_delay_ms=config.max_retry_delay_ms,
            jitter_ms=jitter_ms,
        )

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt may follow the 1-based ``attempt`` that just failed."""
        return attempt < self.max_attempts

    def delay_ms(
        self,
        attempt: int,
        floor_ms: int | None = None,
        rng: random.Random | None = None,
    ) -> int:
        """
        Delay before the attempt that follows ``attempt``.

        Args:
            attempt: 1-based number of the attempt that just failed.
            floor_ms: Lower bound on the base delay, e.g. a ``Retry-After``
                hint or the configured minimum request interval.
            rng: Source of jitter; defaults to the module-level generator.
        """
        base = max(self.base_delay_ms, floor_ms or 0)
        delay = base * (2 ** max(0, attempt - 1))
        if self.jitter_ms:
            delay += (rng or random).randint(0, self.jitter_ms)
        return min(self.max_delay_ms, delay)


def parse_retry_after(value: str | None, now: datetime) -> int | None:
    """
    Milliseconds to wait from a ``Retry-After`` / ``X-Rate-Limit-Reset`` header.

    Accepts delta-seconds, an HTTP date, or an ISO-8601 timestamp.  Returns
    None when the header is absent or unparseable; never negative.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        return max(0, int(float(text) * 1000))
    except (ValueError, OverflowError):
        pass

    reset_at: datetime | None
    try:
        reset_at = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        reset_at = None
    if reset_at is None:
        try:
            reset_at = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None

    if reset_at.tzinfo is None:
        reset_at = reset_at.replace(tzinfo=timezone.utc)
    return max(0, int((reset_at - now).total_seconds() * 1000))
