"""
einvoice_services.integration -- DI root for the LHDN integration.

Responsibility:
    Creates every long-lived collaborator exactly once (http client,
    TokenStore, TokenAcquirer, TokenSessionManager, RateLimiter, config
    source) and builds the session-scoped ones (StatusTracker,
    SubmissionClient, StatusPoller) on request.

Architecture position:
    Services -- the only place where kernel services are constructed and
    composed.  The TokenStore created here is the single process-wide
    token cache; consumers receive it by reference.

Invariants enforced:
    - Single TokenStore per LhdnIntegration instance.
    - DI transparency: all wiring is visible in ``__init__``.

Non-goals:
    - Does NOT manage transaction boundaries (caller's responsibility).

Usage:
    integration = LhdnIntegration(session_factory, token_file=path)
    with session_scope() as session:
        result = integration.submission_client(session).submit(document)
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from pathlib import Path

import httpx
from sqlalchemy.orm import Session

from einvoice_config.provider import ConfigProvider
from einvoice_config.runtime import RuntimeSettings
from einvoice_kernel.db.engine import get_session_factory, init_engine_from_url
from einvoice_kernel.domain.backoff import DEFAULT_JITTER_MS
from einvoice_kernel.domain.clock import Clock, SystemClock
from einvoice_kernel.domain.integration_config import ConfigSource
from einvoice_kernel.domain.rate_limit import RateLimiter
from einvoice_kernel.logging_config import configure_logging, get_logger
from einvoice_kernel.services.status_tracker import StatusTracker
from einvoice_kernel.services.submission_client import SubmissionClient
from einvoice_kernel.services.token_acquirer import CredentialCheck, TokenAcquirer
from einvoice_kernel.services.token_session import TokenSessionManager
from einvoice_kernel.services.token_store import (
    FileTokenTier,
    TokenHistoryRecorder,
    TokenLookup,
    TokenStore,
)
from einvoice_services.status_poller import StatusPoller

logger = get_logger("services.integration")


class LhdnIntegration:
    """Central factory for the LHDN integration services.

    Guarantees:
        - All services share the same Clock, http client and TokenStore.
        - Session-scoped services are built fresh for each session.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        http_client: httpx.Client | None = None,
        token_file: str | Path | None = None,
        config_source: ConfigSource | None = None,
        record_token_history: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        jitter_ms: int = DEFAULT_JITTER_MS,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._rng = rng
        self._jitter_ms = jitter_ms

        self._owns_http = http_client is None
        self.http_client = http_client or httpx.Client()

        self.config_source: ConfigSource = config_source or ConfigProvider(session_factory)

        # The process-wide token cache.
        self.token_store = TokenStore(
            self._clock,
            file_tier=FileTokenTier(token_file) if token_file else None,
            history=(
                TokenHistoryRecorder(session_factory, self._clock)
                if record_token_history else None
            ),
        )
        self.token_acquirer = TokenAcquirer(self.http_client, self.token_store, self._clock)
        self.token_session = TokenSessionManager(
            self.token_store, self.token_acquirer, self.config_source
        )
        self.rate_limiter = RateLimiter.from_rpm(self._clock, sleep=sleep)

    @classmethod
    def from_runtime(
        cls, runtime: RuntimeSettings, **overrides
    ) -> LhdnIntegration:
        """Initialise the database engine and logging from runtime settings."""
        configure_logging(level=runtime.log_level)
        init_engine_from_url(runtime.database_url)
        return cls(get_session_factory(), token_file=runtime.token_file, **overrides)

    # ------------------------------------------------------------------
    # Session-scoped services
    # ------------------------------------------------------------------

    def tracker(self, session: Session) -> StatusTracker:
        return StatusTracker(session, self._clock)

    def submission_client(self, session: Session) -> SubmissionClient:
        return SubmissionClient(
            self.http_client,
            self.token_session,
            self.config_source,
            self.tracker(session),
            self._clock,
            rate_limiter=self.rate_limiter,
            sleep=self._sleep,
            rng=self._rng,
            jitter_ms=self._jitter_ms,
        )

    def status_poller(self, session: Session, batch_size: int = 100) -> StatusPoller:
        client = self.submission_client(session)
        return StatusPoller(client, self.tracker(session), batch_size=batch_size)

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def get_token(self) -> str:
        return self.token_session.get_token()

    def token_status(self) -> TokenLookup:
        """Which tier (if any) currently holds a usable token."""
        return self.token_store.lookup()

    def check_credentials(self) -> CredentialCheck:
        """Dry-run the active credentials without touching the token cache."""
        config = self.config_source.get_active_config()
        return self.token_acquirer.validate_credentials(
            config.base_url, config.client_id, config.client_secret, scope=config.scope
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._owns_http:
            self.http_client.close()

    def __enter__(self) -> LhdnIntegration:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
