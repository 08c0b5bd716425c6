"""
RateLimiter -- per-endpoint minimum-interval pacing.

Responsibility:
    Spaces successive calls to the same authority endpoint at least
    ``60000 / rpm`` milliseconds apart so the client stays under the
    authority's published requests-per-minute ceilings.

Architecture position:
    Kernel > Domain.  Time and sleeping are injected (Clock + sleep
    callable), so the limiter is deterministic under test.

Invariants enforced:
    - Two reservations for the same key are never closer than the key's
      interval.  Slots are reserved under a lock, waits happen outside it.
    - Unknown keys are never delayed.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from einvoice_kernel.domain.clock import Clock

# Published MyInvois ceilings, requests per minute.
DEFAULT_ENDPOINT_RPM: dict[str, int] = {
    "login": 12,
    "submit_documents": 100,
    "get_submission": 300,
    "get_document_details": 125,
    "cancel_document": 12,
    "search_tin": 60,
}


def interval_ms_for_rpm(rpm: int) -> int:
    """Minimum spacing in milliseconds for a requests-per-minute ceiling."""
    if rpm <= 0:
        return 0
    return math.ceil(60_000 / rpm)


class RateLimiter:
    """Blocks callers until their endpoint's next slot is free."""

    def __init__(
        self,
        clock: Clock,
        intervals_ms: Mapping[str, int],
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._intervals = dict(intervals_ms)
        self._sleep = sleep
        self._next_slot: dict[str, datetime] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_rpm(
        cls,
        clock: Clock,
        rpm_table: Mapping[str, int] | None = None,
        overrides_ms: Mapping[str, int] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> RateLimiter:
        intervals = {
            key: interval_ms_for_rpm(rpm)
            for key, rpm in (rpm_table or DEFAULT_ENDPOINT_RPM).items()
        }
        intervals.update(overrides_ms or {})
        return cls(clock, intervals, sleep=sleep)

    def interval_ms(self, key: str) -> int:
        return self._intervals.get(key, 0)

    def wait_for_slot(self, key: str, interval_ms: int | None = None) -> int:
        """
        Reserve the next slot for ``key``; returns milliseconds waited.

        ``interval_ms`` overrides the table for this call, e.g. the
        configured submission interval.
        """
        interval = self._intervals.get(key, 0) if interval_ms is None else interval_ms
        if interval <= 0:
            return 0

        with self._lock:
            now = self._clock.now()
            slot = max(now, self._next_slot.get(key, now))
            self._next_slot[key] = slot + timedelta(milliseconds=interval)

        wait_ms = self._clock.ms_until(slot)
        if wait_ms > 0:
            self._sleep(wait_ms / 1000)
        return wait_ms
