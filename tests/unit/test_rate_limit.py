"""
Unit tests for RateLimiter pacing.

All waits go through a recording sleeper that advances a
DeterministicClock, so no test actually sleeps.
"""

from einvoice_kernel.domain.rate_limit import (
    DEFAULT_ENDPOINT_RPM,
    RateLimiter,
    interval_ms_for_rpm,
)


class TestIntervals:

    def test_interval_from_rpm(self):
        assert interval_ms_for_rpm(100) == 600
        assert interval_ms_for_rpm(12) == 5000
        assert interval_ms_for_rpm(7) == 8572  # rounded up

    def test_non_positive_rpm_means_no_pacing(self):
        assert interval_ms_for_rpm(0) == 0

    def test_default_table(self, deterministic_clock):
        limiter = RateLimiter.from_rpm(deterministic_clock)
        assert limiter.interval_ms("submit_documents") == 600
        assert limiter.interval_ms("get_submission") == 200
        assert limiter.interval_ms("unknown") == 0
        assert set(DEFAULT_ENDPOINT_RPM) >= {"login", "submit_documents", "cancel_document"}

    def test_overrides(self, deterministic_clock):
        limiter = RateLimiter.from_rpm(
            deterministic_clock, overrides_ms={"submit_documents": 50}
        )
        assert limiter.interval_ms("submit_documents") == 50


class TestWaitForSlot:

    def test_first_call_is_free(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {"x": 1000}, sleep=sleeper)
        assert limiter.wait_for_slot("x") == 0
        assert sleeper.calls == []

    def test_back_to_back_calls_spaced(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {"x": 1000}, sleep=sleeper)
        limiter.wait_for_slot("x")
        assert limiter.wait_for_slot("x") == 1000
        assert limiter.wait_for_slot("x") == 1000
        assert sleeper.calls == [1.0, 1.0]

    def test_elapsed_time_counts(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {"x": 1000}, sleep=sleeper)
        limiter.wait_for_slot("x")
        deterministic_clock.advance(0.4)
        assert limiter.wait_for_slot("x") == 600

    def test_keys_are_independent(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {"a": 1000, "b": 1000}, sleep=sleeper)
        limiter.wait_for_slot("a")
        assert limiter.wait_for_slot("b") == 0

    def test_per_call_interval_override(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {"x": 1000}, sleep=sleeper)
        limiter.wait_for_slot("x", interval_ms=250)
        assert limiter.wait_for_slot("x", interval_ms=250) == 250

    def test_unknown_key_never_waits(self, deterministic_clock, sleeper):
        limiter = RateLimiter(deterministic_clock, {}, sleep=sleeper)
        for _ in range(5):
            assert limiter.wait_for_slot("anything") == 0
        assert sleeper.calls == []
