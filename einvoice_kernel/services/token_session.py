"""
TokenSessionManager -- "give me a usable bearer token".

Responsibility:
    Serves the cached token when one is usable; otherwise acquires a new
    one with the active configuration.  On any failure the store is
    cleared before the error propagates.

Architecture position:
    Kernel > Services.  Depends on TokenStore, TokenAcquirer and a
    ConfigSource; called by SubmissionClient before every authority call.

Invariants enforced:
    - Concurrent misses collapse into one acquisition (single-flight):
      the first caller acquires under a lock; the others re-read the
      store once the lock is free and reuse its token.
    - After a failed acquisition no tier holds a token, so a stale token
      can never be served on the next call.

Failure modes:
    - AuthError from the token exchange.
    - ConfigNotFoundError / ConfigInvalidError from the config source.
"""

from __future__ import annotations

import threading

from einvoice_kernel.domain.integration_config import ConfigSource
from einvoice_kernel.exceptions import EInvoiceError
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.services.token_acquirer import TokenAcquirer
from einvoice_kernel.services.token_store import TokenStore

logger = get_logger("services.token_session")


class TokenSessionManager:
    """Hands out bearer token strings, acquiring on a cache miss."""

    def __init__(
        self,
        store: TokenStore,
        acquirer: TokenAcquirer,
        config_source: ConfigSource,
    ):
        self._store = store
        self._acquirer = acquirer
        self._config_source = config_source
        self._acquire_lock = threading.Lock()

    def get_token(self) -> str:
        """
        Return a usable access token string.

        Raises:
            AuthError: The authority refused or could not be reached.
            ConfigError: No usable integration configuration.
        """
        token = self._store.read()
        if token is not None:
            return token.access_token

        with self._acquire_lock:
            # Another caller may have filled the store while we waited.
            token = self._store.read()
            if token is not None:
                logger.debug("token_acquired_by_peer")
                return token.access_token

            try:
                config = self._config_source.get_active_config()
                token = self._acquirer.acquire(config)
            except EInvoiceError as exc:
                self._store.invalidate()
                logger.warning(
                    "token_acquisition_failed",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

        return token.access_token

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the authority answered 401."""
        self._store.invalidate()
