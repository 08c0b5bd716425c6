"""Unit tests for the Clock implementations."""

from datetime import datetime, timedelta, timezone

import pytest

from einvoice_kernel.domain.clock import DeterministicClock, SystemClock

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestDeterministicClock:

    def test_default_start(self):
        assert DeterministicClock().now() == START

    def test_advance_fractional_seconds(self):
        clock = DeterministicClock()
        clock.advance(0.25)
        assert clock.now() == START + timedelta(milliseconds=250)

    def test_start_normalised_to_utc(self):
        kl = timezone(timedelta(hours=8))
        clock = DeterministicClock(datetime(2024, 1, 1, 20, 0, tzinfo=kl))
        assert clock.now() == START
        assert clock.now().tzinfo is timezone.utc

    def test_naive_start_refused(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 1, 1, 12, 0))

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            DeterministicClock().advance(-1)


class TestMsUntil:

    def test_future_moment(self):
        clock = DeterministicClock()
        assert clock.ms_until(START + timedelta(seconds=1.5)) == 1500

    def test_past_moment_is_zero(self):
        clock = DeterministicClock()
        clock.advance(10)
        assert clock.ms_until(START) == 0


class TestSystemClock:

    def test_now_is_utc_aware(self):
        assert SystemClock().now().tzinfo is timezone.utc
