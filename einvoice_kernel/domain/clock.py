"""
Clock -- the one source of "now" for token expiry, pacing and status stamps.

Services receive a Clock through their constructor and never call
``datetime.now()`` themselves.  Every value a Clock hands out is UTC-aware,
because the token file, the authority's ``Retry-After`` dates and the
``status_changed_at`` column are all compared against it.

Tests drive ``DeterministicClock`` forward explicitly; the test sleeper
advances it by exactly the delay the rate limiter or the backoff loop asked
for, so expiry-window and retry timing assertions are exact.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Injectable time source.  ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def ms_until(self, moment: datetime) -> int:
        """Whole milliseconds from now until ``moment``; 0 once it has passed."""
        remaining = (moment - self.now()).total_seconds() * 1000
        return max(0, int(remaining))


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    Starts at 2024-01-01T12:00:00Z unless given a start time.  ``advance()``
    takes fractional seconds so millisecond backoff and pacing delays can be
    replayed against it.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._now = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> None:
        if seconds < 0:
            raise ValueError("a clock cannot move backwards")
        self._now += timedelta(seconds=seconds)
