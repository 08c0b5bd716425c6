"""
Structured JSON logging for the e-invoice kernel.

Every log line is one JSON object: an envelope (``ts``, ``level``,
``logger``, ``message``), the submission context bound through
``LogContext`` and whatever the call site passed in ``extra``.  Messages are
snake_case event names (``token_cache_hit``, ``submission_accepted``,
``status_transition_rejected``) so operators can filter on them.

Credentials are masked here, not at the call sites: any ``extra`` key (or
exception attribute) naming a bearer token is reduced to
``token_preview()``, and any key naming a secret is replaced outright.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
    "token_preview",
    "redact",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

_LOGGER_PREFIX = "einvoice_kernel"

TOKEN_KEYS = frozenset({"token", "access_token", "bearer_token"})
SECRET_KEYS = frozenset({"client_secret", "authorization", "password"})
MASK = "***"


def token_preview(token: str | None) -> str | None:
    """First characters of a bearer token, safe to put in a log line."""
    if not token:
        return None
    return f"{token[:10]}..."


def redact(key: str, value: Any) -> Any:
    """Mask ``value`` if ``key`` names a credential; recurse into mappings."""
    lowered = key.lower()
    if lowered in SECRET_KEYS:
        return MASK if value else value
    if lowered in TOKEN_KEYS:
        return token_preview(value) if isinstance(value, str) else value
    if isinstance(value, Mapping):
        return {k: redact(str(k), v) for k, v in value.items()}
    return value


# ---------------------------------------------------------------------------
# Submission context
# ---------------------------------------------------------------------------


class LogContext:
    """
    Per-operation fields stamped onto every log line.

    ``correlation_id`` ties together all lines of one CLI command, one
    submission or one polling pass.  The other fields identify the invoice
    and the authority submission being worked on.  Values live in a single
    ContextVar, so they follow threads started with ``contextvars`` and
    asyncio tasks.
    """

    FIELDS = ("correlation_id", "invoice_number", "submission_uid", "record_id")

    _fields: ContextVar[dict[str, str]] = ContextVar("einvoice_log_context")

    @classmethod
    def _current(cls) -> dict[str, str]:
        return cls._fields.get({})

    @classmethod
    def _merged(cls, fields: dict[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(cls._current())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add fields to the current context; ``None`` values are ignored."""
        cls._fields.set(cls._merged(fields))

    @classmethod
    def get(cls, name: str) -> str | None:
        return cls._current().get(name)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._current())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore."""
        token = cls._fields.set(cls._merged(fields))
        try:
            yield
        finally:
            cls._fields.reset(token)

    @classmethod
    def operation(cls, **fields: Any):
        """
        ``bind()`` for one unit of work.  Keeps the enclosing correlation_id
        if there is one, otherwise starts a new one.
        """
        fields.setdefault("correlation_id", cls.get("correlation_id") or uuid4().hex)
        return cls.bind(**fields)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    if isinstance(obj, (UUID, Enum)):
        return str(obj.value if isinstance(obj, Enum) else obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single redacted JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = redact(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            # Structured attributes of EInvoiceError subclasses
            for key, val in vars(exc).items():
                if not key.startswith("_") and key != "code":
                    payload[f"exc_{key}"] = redact(key, val)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``einvoice_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``einvoice_kernel`` logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)


def reset_logging() -> None:
    """Drop the handler installed by configure_logging(). Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
