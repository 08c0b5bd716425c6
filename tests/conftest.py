"""
Pytest fixtures for the e-invoice test suite.

Provides:
- SQLite database sessions (one fresh database file per test)
- A deterministic clock and a sleeper that advances it
- httpx clients backed by MockTransport handlers
- IntegrationConfig builders

No network access and no real sleeping happen anywhere in the suite.
"""

import json
import logging
import random
from io import StringIO

import httpx
import pytest
from sqlalchemy.orm import Session, sessionmaker

from einvoice_kernel.db.engine import build_engine, create_tables
from einvoice_kernel.domain.clock import DeterministicClock
from einvoice_kernel.domain.integration_config import (
    Environment,
    IntegrationConfig,
    RateLimitSettings,
    StaticConfigSource,
)
from einvoice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

BASE_URL = "https://api.test"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture einvoice_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tracker):
            tracker.transition(record, SubmissionStatus.VALID)
            logs = captured_logs()
            assert any(r["message"] == "status_transition_rejected" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("einvoice_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """
    Fresh SQLite database file with every table created.

    A file (not :memory:) so short-lived sessions opened by ConfigProvider
    and TokenHistoryRecorder get their own connection and never roll back
    the test session's open transaction.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'einvoice.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Time fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


class RecordingSleeper:
    """Stands in for time.sleep: records each delay and advances the clock."""

    def __init__(self, clock: DeterministicClock):
        self.clock = clock
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)

    @property
    def total_ms(self) -> int:
        return round(sum(self.calls) * 1000)


@pytest.fixture
def sleeper(deterministic_clock):
    return RecordingSleeper(deterministic_clock)


@pytest.fixture
def rng():
    return random.Random(1234)


# =============================================================================
# HTTP fixtures
# =============================================================================


@pytest.fixture
def make_http():
    """
    Build an httpx.Client whose requests go to ``handler``.

    Usage::

        http = make_http(lambda request: httpx.Response(200, json={...}))
    """
    clients: list[httpx.Client] = []

    def _make(handler) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


def _token_response(access_token: str = "tok-1", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "scope": "InvoicingAPI",
        },
    )


@pytest.fixture
def token_response():
    """Successful /connect/token answer builder."""
    return _token_response


# =============================================================================
# Configuration fixtures
# =============================================================================


def build_config(**overrides) -> IntegrationConfig:
    values = dict(
        environment=Environment.SANDBOX,
        base_url=BASE_URL,
        client_id="client-id",
        client_secret="client-secret",
        timeout_ms=30_000,
        retry_enabled=True,
        max_retries=3,
        retry_delay_ms=100,
        max_retry_delay_ms=10_000,
        rate_limit=RateLimitSettings(
            submission_requests_per_minute=100, min_interval_ms=600
        ),
    )
    values.update(overrides)
    return IntegrationConfig(**values)


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def config_source():
    return StaticConfigSource(build_config())


def _lhdn_settings(**overrides) -> dict:
    """camelCase settings payload as an operator would author it."""
    settings = {
        "environment": "sandbox",
        "sandboxUrl": "https://preprod-api.myinvois.hasil.gov.my",
        "productionUrl": "https://api.myinvois.hasil.gov.my",
        "clientId": "client-id",
        "clientSecret": "client-secret",
        "timeout": 60000,
        "retryEnabled": True,
        "maxRetries": 3,
        "retryDelay": 3000,
        "maxRetryDelay": 60000,
        "rateLimit": {"submissionRequests": 100, "minInterval": 600},
    }
    settings.update(overrides)
    return settings


@pytest.fixture
def lhdn_settings():
    return _lhdn_settings
