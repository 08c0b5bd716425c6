"""
TokenStore -- three-tier access token cache.

Responsibility:
    Holds the process-wide authority access token.  ``read()`` checks the
    memory tier, then the durable file tier; ``write()`` fills memory, the
    file and an append-only history table; ``invalidate()`` clears the
    operational tiers and leaves history alone.

Architecture position:
    Kernel > Services.  One instance is owned by the integration root and
    shared by reference with every consumer; there is no module-level
    cache.

Invariants enforced:
    - A token is returned only while ``now < expires_at - SAFETY_BUFFER``.
    - A file-tier hit is promoted into memory before it is returned.
    - Memory writes are last-writer-wins under a lock.
    - The file is replaced atomically (temp file + ``os.replace``).

Failure modes:
    - None raised from ``write()``: a file-tier failure is logged and the
      token stays in memory; a history failure is reported as
      ``AuditWriteResult.FAILED``.
    - Corrupt or partial token files are treated as a miss.

Audit relevance:
    Every issued token lands in ``token_history`` when the database is
    reachable; the result of that insert is explicit in the return type.
"""

from __future__ import annotations

import configparser
import os
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from einvoice_kernel.domain.access_token import SAFETY_BUFFER, AccessToken
from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.models.token_history import TokenHistory

logger = get_logger("services.token_store")

TOKEN_SECTION = "Token"

DEFAULT_TOKEN_FILE = Path("config") / "AuthorizeToken.ini"


def _parse_utc(value: str) -> datetime:
    """ISO-8601 timestamp; one written without an offset is taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AuditWriteResult(str, Enum):
    """Outcome of the best-effort token history insert."""

    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"  # No history recorder configured


class TokenSource(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    MISS = "miss"


@dataclass(frozen=True)
class TokenLookup:
    token: AccessToken | None
    source: TokenSource


@dataclass(frozen=True)
class TokenWriteResult:
    file_written: bool
    audit: AuditWriteResult


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


class MemoryTokenTier:
    """Process-local holder for the current token."""

    name = TokenSource.MEMORY

    def __init__(self) -> None:
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def load(self) -> AccessToken | None:
        with self._lock:
            return self._token

    def save(self, token: AccessToken) -> bool:
        with self._lock:
            self._token = token
        return True

    def clear(self) -> None:
        with self._lock:
            self._token = None


class FileTokenTier:
    """
    Durable tier: an INI file with a ``[Token]`` section.

    Keys: access_token, token_type, expires_in, scope, timestamp,
    expiry_time (ISO-8601).  Survives process restarts.
    """

    name = TokenSource.FILE

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)

    def load(self) -> AccessToken | None:
        if not self.path.exists():
            return None

        parser = configparser.ConfigParser(interpolation=None)
        try:
            with self.path.open(encoding="utf-8") as fh:
                parser.read_file(fh)
            section = parser[TOKEN_SECTION]
            expires_at = _parse_utc(section["expiry_time"])
            expires_in = int(section.get("expires_in", "0") or 0)
            timestamp = section.get("timestamp")
            issued_at = (
                _parse_utc(timestamp)
                if timestamp
                else expires_at - timedelta(seconds=expires_in)
            )
            access_token = section["access_token"].strip()
            if not access_token:
                raise ValueError("empty access_token")
        except (OSError, configparser.Error, KeyError, ValueError) as exc:
            logger.warning(
                "token_file_unreadable",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return None

        return AccessToken(
            access_token=access_token,
            token_type=section.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=section.get("scope") or None,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def save(self, token: AccessToken) -> bool:
        parser = configparser.ConfigParser(interpolation=None)
        parser[TOKEN_SECTION] = {
            "access_token": token.access_token,
            "token_type": token.token_type,
            "expires_in": str(token.expires_in),
            "scope": token.scope or "",
            "timestamp": token.issued_at.isoformat(),
            "expiry_time": token.expires_at.isoformat(),
        }

        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                parser.write(fh)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            logger.warning(
                "token_file_write_failed",
                extra={"path": str(self.path), "error": str(exc)},
            )
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False
        return True

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(
                "token_file_delete_failed",
                extra={"path": str(self.path), "error": str(exc)},
            )


class TokenHistoryRecorder:
    """Best-effort append to ``token_history`` in its own short transaction."""

    def __init__(self, session_factory: Callable[[], Session], clock: Clock):
        self._session_factory = session_factory
        self._clock = clock

    def record(self, token: AccessToken) -> AuditWriteResult:
        try:
            with self._session_factory() as session:
                session.add(
                    TokenHistory(
                        access_token=token.access_token,
                        token_type=token.token_type,
                        expiry_time=token.expires_at,
                        created_at=self._clock.now(),
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "token_history_write_failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return AuditWriteResult.FAILED
        return AuditWriteResult.OK


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TokenStore:
    """
    The single token cache for the process.

    Usage:
        store = TokenStore(clock, FileTokenTier("config/AuthorizeToken.ini"),
                           TokenHistoryRecorder(session_factory, clock))
        token = store.read()
    """

    def __init__(
        self,
        clock: Clock,
        file_tier: FileTokenTier | None = None,
        history: TokenHistoryRecorder | None = None,
        memory_tier: MemoryTokenTier | None = None,
    ):
        self._clock = clock
        self._memory = memory_tier or MemoryTokenTier()
        self._file = file_tier
        self._history = history

    def _usable(self, token: AccessToken | None, now: datetime) -> bool:
        return token is not None and now < token.expires_at - SAFETY_BUFFER

    def lookup(self) -> TokenLookup:
        """Read through the tiers and report which one answered."""
        now = self._clock.now()

        token = self._memory.load()
        if self._usable(token, now):
            logger.debug(
                "token_cache_hit",
                extra={"tier": TokenSource.MEMORY.value,
                       "expires_at": token.expires_at},
            )
            return TokenLookup(token, TokenSource.MEMORY)

        if self._file is not None:
            token = self._file.load()
            if self._usable(token, now):
                self._memory.save(token)
                logger.info(
                    "token_promoted_from_file",
                    extra={
                        "token": token.access_token,
                        "expires_at": token.expires_at,
                    },
                )
                return TokenLookup(token, TokenSource.FILE)

        logger.debug("token_cache_miss")
        return TokenLookup(None, TokenSource.MISS)

    def read(self) -> AccessToken | None:
        return self.lookup().token

    def write(self, token: AccessToken) -> TokenWriteResult:
        """Store ``token`` in every tier; never raises on tier failure."""
        self._memory.save(token)
        file_written = self._file.save(token) if self._file is not None else False
        audit = (
            self._history.record(token)
            if self._history is not None
            else AuditWriteResult.SKIPPED
        )
        logger.info(
            "token_stored",
            extra={
                "token": token.access_token,
                "expires_at": token.expires_at,
                "file_written": file_written,
                "audit": audit.value,
            },
        )
        return TokenWriteResult(file_written=file_written, audit=audit)

    def invalidate(self) -> None:
        """Clear memory and file tiers; history rows are kept."""
        self._memory.clear()
        if self._file is not None:
            self._file.clear()
        logger.info("token_invalidated")
