"""
Tests for the three-tier TokenStore.

Verifies:
- Memory hit, file hit with promotion, miss
- The 5-minute buffer applied on every tier
- Corrupt or partial token files are a miss, not an error
- write() fills every tier; history failures are reported, never raised
- invalidate() clears memory and file, leaves history
"""

import os
import stat
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from einvoice_kernel.domain.access_token import AccessToken
from einvoice_kernel.models.token_history import TokenHistory
from einvoice_kernel.services.token_store import (
    AuditWriteResult,
    FileTokenTier,
    TokenHistoryRecorder,
    TokenSource,
    TokenStore,
)


def _token(clock, value="tok-abc", expires_in=3600) -> AccessToken:
    return AccessToken.from_token_response(
        {"access_token": value, "token_type": "Bearer", "expires_in": expires_in,
         "scope": "InvoicingAPI"},
        issued_at=clock.now(),
    )


@pytest.fixture
def token_file(tmp_path):
    return tmp_path / "config" / "AuthorizeToken.ini"


@pytest.fixture
def store(deterministic_clock, token_file, session_factory):
    return TokenStore(
        deterministic_clock,
        file_tier=FileTokenTier(token_file),
        history=TokenHistoryRecorder(session_factory, deterministic_clock),
    )


class TestLookup:

    def test_empty_store_is_a_miss(self, store):
        lookup = store.lookup()
        assert lookup.token is None
        assert lookup.source is TokenSource.MISS

    def test_memory_hit(self, store, deterministic_clock):
        store.write(_token(deterministic_clock))
        lookup = store.lookup()
        assert lookup.source is TokenSource.MEMORY
        assert lookup.token.access_token == "tok-abc"

    def test_file_hit_is_promoted(self, deterministic_clock, token_file, captured_logs):
        writer = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))
        writer.write(_token(deterministic_clock))

        # A fresh process: empty memory, same file.
        reader = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))
        first = reader.lookup()
        assert first.source is TokenSource.FILE
        assert first.token.access_token == "tok-abc"
        assert reader.lookup().source is TokenSource.MEMORY
        assert any(r["message"] == "token_promoted_from_file" for r in captured_logs())

    def test_file_token_round_trips_expiry(self, deterministic_clock, token_file):
        token = _token(deterministic_clock)
        FileTokenTier(token_file).save(token)
        loaded = FileTokenTier(token_file).load()
        assert loaded.expires_at == token.expires_at
        assert loaded.issued_at == token.issued_at
        assert loaded.scope == "InvoicingAPI"

    def test_not_served_inside_buffer(self, store, deterministic_clock):
        store.write(_token(deterministic_clock, expires_in=3600))
        deterministic_clock.advance(3600 - 300 - 1)
        assert store.read() is not None
        deterministic_clock.advance(1)
        assert store.read() is None

    def test_file_tier_buffer_applies(self, deterministic_clock, token_file):
        FileTokenTier(token_file).save(_token(deterministic_clock, expires_in=600))
        deterministic_clock.advance(301)
        reader = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))
        assert reader.lookup().source is TokenSource.MISS

    def test_stale_memory_falls_through_to_file(self, deterministic_clock, token_file):
        store = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))
        store.write(_token(deterministic_clock, value="old", expires_in=400))
        FileTokenTier(token_file).save(_token(deterministic_clock, value="new"))
        deterministic_clock.advance(120)
        lookup = store.lookup()
        assert lookup.source is TokenSource.FILE
        assert lookup.token.access_token == "new"


class TestCorruptFile:

    @pytest.mark.parametrize("content", [
        "",
        "garbage without sections",
        "[Token]\naccess_token = abc\n",
        "[Token]\naccess_token = abc\nexpiry_time = tomorrow\n",
        "[Token]\naccess_token =\nexpiry_time = 2024-01-01T13:00:00+00:00\n",
        "[Other]\nkey = value\n",
    ])
    def test_treated_as_miss(self, deterministic_clock, token_file, content, captured_logs):
        token_file.parent.mkdir(parents=True)
        token_file.write_text(content)
        store = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))
        assert store.lookup().source is TokenSource.MISS
        assert any(r["message"] == "token_file_unreadable" for r in captured_logs())

    def test_timestamps_without_offset_read_as_utc(self, deterministic_clock, token_file):
        token_file.parent.mkdir(parents=True)
        token_file.write_text(
            "[Token]\naccess_token = abc\nexpires_in = 3600\n"
            "timestamp = 2024-01-01T12:00:00\nexpiry_time = 2024-01-01T13:00:00\n"
        )
        store = TokenStore(deterministic_clock, file_tier=FileTokenTier(token_file))

        lookup = store.lookup()
        assert lookup.source is TokenSource.FILE
        assert lookup.token.expires_at == deterministic_clock.now() + timedelta(hours=1)
        assert lookup.token.issued_at == deterministic_clock.now()

        deterministic_clock.advance(3600 - 300)
        assert store.read() is None

    def test_missing_file_is_silent_miss(self, deterministic_clock, token_file):
        assert FileTokenTier(token_file).load() is None


class TestWrite:

    def test_write_fills_every_tier(self, store, deterministic_clock, token_file, session):
        result = store.write(_token(deterministic_clock))
        assert result.file_written is True
        assert result.audit is AuditWriteResult.OK
        assert token_file.exists()
        history = session.query(TokenHistory).all()
        assert [h.access_token for h in history] == ["tok-abc"]
        assert history[0].expiry_time == deterministic_clock.now() + timedelta(seconds=3600)

    def test_token_file_is_private(self, store, deterministic_clock, token_file):
        store.write(_token(deterministic_clock))
        mode = stat.S_IMODE(os.stat(token_file).st_mode)
        assert mode == 0o600

    def test_no_temp_files_left_behind(self, store, deterministic_clock, token_file):
        store.write(_token(deterministic_clock, value="one"))
        store.write(_token(deterministic_clock, value="two"))
        assert sorted(p.name for p in token_file.parent.iterdir()) == ["AuthorizeToken.ini"]
        assert FileTokenTier(token_file).load().access_token == "two"

    def test_without_history_audit_skipped(self, deterministic_clock):
        store = TokenStore(deterministic_clock)
        result = store.write(_token(deterministic_clock))
        assert result.audit is AuditWriteResult.SKIPPED
        assert result.file_written is False
        assert store.lookup().source is TokenSource.MEMORY

    def test_history_failure_reported_not_raised(self, deterministic_clock, captured_logs):
        def broken_session():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        store = TokenStore(
            deterministic_clock,
            history=TokenHistoryRecorder(broken_session, deterministic_clock),
        )
        result = store.write(_token(deterministic_clock))
        assert result.audit is AuditWriteResult.FAILED
        assert store.read() is not None
        assert any(r["message"] == "token_history_write_failed" for r in captured_logs())

    def test_file_failure_keeps_memory(self, deterministic_clock, tmp_path, captured_logs):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        store = TokenStore(
            deterministic_clock, file_tier=FileTokenTier(blocker / "token.ini")
        )
        result = store.write(_token(deterministic_clock))
        assert result.file_written is False
        assert store.lookup().source is TokenSource.MEMORY
        assert any(r["message"] == "token_file_write_failed" for r in captured_logs())

    def test_full_token_never_logged(self, store, deterministic_clock, captured_logs):
        secret = "eyJhbGciOiJSUzI1NiIsImtpZCI6IjE2In0.payload.signature"
        store.write(_token(deterministic_clock, value=secret))
        assert all(secret not in str(r) for r in captured_logs())


class TestInvalidate:

    def test_clears_memory_and_file(self, store, deterministic_clock, token_file):
        store.write(_token(deterministic_clock))
        store.invalidate()
        assert store.lookup().source is TokenSource.MISS
        assert not token_file.exists()

    def test_history_kept(self, store, deterministic_clock, session):
        store.write(_token(deterministic_clock))
        store.invalidate()
        assert session.query(TokenHistory).count() == 1

    def test_invalidate_empty_store(self, store):
        store.invalidate()
        assert store.read() is None
