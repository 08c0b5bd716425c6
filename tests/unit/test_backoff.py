"""
Unit tests for BackoffPolicy and Retry-After parsing.

Verifies:
- max_attempts bounds the number of calls
- Exponential growth, floor and cap
- Jitter is bounded and reproducible with a seeded rng
- Retry-After in delta-seconds, HTTP-date and ISO forms
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from einvoice_kernel.domain.backoff import BackoffPolicy, parse_retry_after

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestConstruction:

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy(max_attempts=0, base_delay_ms=100, max_delay_ms=1000)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy(max_attempts=1, base_delay_ms=-1, max_delay_ms=1000)

    def test_from_config_uses_retry_settings(self, make_config):
        policy = BackoffPolicy.from_config(
            make_config(max_retries=5, retry_delay_ms=200, max_retry_delay_ms=900)
        )
        assert policy.max_attempts == 5
        assert policy.base_delay_ms == 200
        assert policy.max_delay_ms == 900

    def test_retry_disabled_means_single_attempt(self, make_config):
        policy = BackoffPolicy.from_config(make_config(retry_enabled=False, max_retries=5))
        assert policy.max_attempts == 1
        assert not policy.should_retry(1)

    def test_zero_max_retries_still_attempts_once(self, make_config):
        policy = BackoffPolicy.from_config(make_config(max_retries=0))
        assert policy.max_attempts == 1


class TestDelays:

    def test_should_retry_counts_total_attempts(self):
        policy = BackoffPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=1000)
        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)

    def test_exponential_without_jitter(self):
        policy = BackoffPolicy(
            max_attempts=5, base_delay_ms=100, max_delay_ms=10_000, jitter_ms=0
        )
        assert [policy.delay_ms(n) for n in (1, 2, 3, 4)] == [100, 200, 400, 800]

    def test_capped_at_max_delay(self):
        policy = BackoffPolicy(
            max_attempts=10, base_delay_ms=1000, max_delay_ms=3000, jitter_ms=0
        )
        assert policy.delay_ms(6) == 3000

    def test_floor_raises_base(self):
        policy = BackoffPolicy(
            max_attempts=3, base_delay_ms=100, max_delay_ms=10_000, jitter_ms=0
        )
        assert policy.delay_ms(1, floor_ms=2000) == 2000

    def test_seeded_jitter_is_reproducible(self):
        policy = BackoffPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=10_000)
        first = policy.delay_ms(1, rng=random.Random(7))
        second = policy.delay_ms(1, rng=random.Random(7))
        assert first == second

    @settings(max_examples=200)
    @given(
        attempt=st.integers(min_value=1, max_value=30),
        base=st.integers(min_value=0, max_value=60_000),
        cap=st.integers(min_value=0, max_value=120_000),
        jitter=st.integers(min_value=0, max_value=1000),
        floor=st.one_of(st.none(), st.integers(min_value=0, max_value=120_000)),
        seed=st.integers(min_value=0, max_value=2**32 - 1),
    )
    def test_delay_always_within_bounds(self, attempt, base, cap, jitter, floor, seed):
        policy = BackoffPolicy(
            max_attempts=30, base_delay_ms=base, max_delay_ms=cap, jitter_ms=jitter
        )
        delay = policy.delay_ms(attempt, floor_ms=floor, rng=random.Random(seed))
        assert 0 <= delay <= cap
        expected_base = max(base, floor or 0) * 2 ** (attempt - 1)
        assert delay >= min(cap, expected_base)


class TestParseRetryAfter:

    @pytest.mark.parametrize("value", [None, "", "   ", "not-a-date"])
    def test_unusable_values(self, value):
        assert parse_retry_after(value, NOW) is None

    def test_delta_seconds(self):
        assert parse_retry_after("3", NOW) == 3000

    def test_fractional_seconds(self):
        assert parse_retry_after("1.5", NOW) == 1500

    def test_negative_seconds_clamped(self):
        assert parse_retry_after("-4", NOW) == 0

    def test_http_date(self):
        assert parse_retry_after("Mon, 01 Jan 2024 12:00:10 GMT", NOW) == 10_000

    def test_iso_timestamp(self):
        reset = (NOW + timedelta(seconds=2)).isoformat().replace("+00:00", "Z")
        assert parse_retry_after(reset, NOW) == 2000

    def test_past_date_clamped(self):
        assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", NOW) == 0
