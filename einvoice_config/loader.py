"""
Configuration Loader (``einvoice_config.loader``).

Responsibility
--------------
Turns a camelCase LHDN settings payload (a YAML file authored by an
operator, or the JSON stored on an ``integration_settings`` row) into a
frozen ``IntegrationConfig``, and stores new settings rows.

Architecture position
---------------------
**Config layer**.  Depends on ``einvoice_kernel`` domain types and models;
the kernel never imports from here.

Invariants enforced
-------------------
* One parser (``parse_integration_settings``) for YAML and database
  payloads, so both obey the same defaults and validation.
* ``timeout_ms`` is clamped into [MIN_TIMEOUT_MS, MAX_TIMEOUT_MS].
* ``seed_integration_settings`` leaves exactly one active row per type.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unusable settings  -> ``ConfigInvalidError`` naming the problem.
"""

from __future__ import annotations

import hashlib
import json
import math
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import update
from sqlalchemy.orm import Session

from einvoice_kernel.domain.clock import Clock, SystemClock
from einvoice_kernel.domain.integration_config import (
    DEFAULT_SCOPE,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    Environment,
    IntegrationConfig,
    RateLimitSettings,
    normalize_base_url,
)
from einvoice_kernel.exceptions import ConfigInvalidError
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.models.integration_setting import (
    LHDN_INTEGRATION_TYPE,
    IntegrationSetting,
)

logger = get_logger("config.loader")

DEFAULT_TIMEOUT_MS = 60_000
DEFAULT_RETRY_ENABLED = True
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 3_000
DEFAULT_MAX_RETRY_DELAY_MS = 60_000
DEFAULT_SUBMISSION_RPM = 100

_ENVIRONMENT_URL_KEYS = {
    Environment.PRODUCTION: "productionUrl",
    Environment.SANDBOX: "sandboxUrl",
}

_SECRET_KEYS = frozenset({"clientSecret"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization, with secrets masked so
    the checksum can be logged.
    """
    masked = {k: ("***" if k in _SECRET_KEYS else v) for k, v in data.items()}
    canonical = json.dumps(masked, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _as_int(settings: dict[str, Any], key: str, default: int, config_id: str | None) -> int:
    value = settings.get(key)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigInvalidError(f"{key} must be an integer, got {value!r}", config_id) from None
    if number < 0:
        raise ConfigInvalidError(f"{key} must not be negative, got {number}", config_id)
    return number


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def coerce_settings(payload: Any, config_id: str | None = None) -> dict[str, Any]:
    """Accept a dict or a JSON string; anything else is invalid."""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise ConfigInvalidError("settings are not valid JSON", config_id) from None
    if not isinstance(payload, dict):
        raise ConfigInvalidError("settings must be a JSON object", config_id)
    return payload


def resolve_base_url(settings: dict[str, Any], environment: Environment) -> str:
    """Environment-specific URL, falling back to ``middlewareUrl``; may be empty."""
    url = settings.get(_ENVIRONMENT_URL_KEYS[environment]) or settings.get("middlewareUrl")
    return normalize_base_url(str(url)) if url else ""


def parse_integration_settings(
    payload: Any, config_id: str | None = None
) -> IntegrationConfig:
    """
    Parse camelCase LHDN settings into an IntegrationConfig.

    Raises:
        ConfigInvalidError: payload is not an object, the environment is
            unknown, no base URL resolves, or credentials are missing.
    """
    settings = coerce_settings(payload, config_id)

    raw_env = str(settings.get("environment") or Environment.SANDBOX.value).strip().lower()
    try:
        environment = Environment(raw_env)
    except ValueError:
        raise ConfigInvalidError(f"unknown environment {raw_env!r}", config_id) from None

    base_url = resolve_base_url(settings, environment)
    if not base_url:
        raise ConfigInvalidError(
            f"no base URL for {environment.value} "
            f"({_ENVIRONMENT_URL_KEYS[environment]} or middlewareUrl)",
            config_id,
        )

    client_id = str(settings.get("clientId") or "").strip()
    client_secret = str(settings.get("clientSecret") or "").strip()
    missing = [
        name for name, value in (("clientId", client_id), ("clientSecret", client_secret))
        if not value
    ]
    if missing:
        raise ConfigInvalidError(f"missing {', '.join(missing)}", config_id)

    timeout_ms = _as_int(settings, "timeout", DEFAULT_TIMEOUT_MS, config_id)
    timeout_ms = min(MAX_TIMEOUT_MS, max(MIN_TIMEOUT_MS, timeout_ms))

    rate = settings.get("rateLimit") or {}
    if not isinstance(rate, dict):
        raise ConfigInvalidError("rateLimit must be an object", config_id)
    rpm = _as_int(rate, "submissionRequests", DEFAULT_SUBMISSION_RPM, config_id) or DEFAULT_SUBMISSION_RPM
    min_interval = _as_int(rate, "minInterval", math.ceil(60_000 / rpm), config_id)

    tin = str(settings.get("tin") or "").strip() or None

    return IntegrationConfig(
        environment=environment,
        base_url=base_url,
        client_id=client_id,
        client_secret=client_secret,
        timeout_ms=timeout_ms,
        retry_enabled=_as_bool(settings.get("retryEnabled"), DEFAULT_RETRY_ENABLED),
        max_retries=_as_int(settings, "maxRetries", DEFAULT_MAX_RETRIES, config_id),
        retry_delay_ms=_as_int(settings, "retryDelay", DEFAULT_RETRY_DELAY_MS, config_id),
        max_retry_delay_ms=_as_int(
            settings, "maxRetryDelay", DEFAULT_MAX_RETRY_DELAY_MS, config_id
        ),
        rate_limit=RateLimitSettings(
            submission_requests_per_minute=rpm,
            min_interval_ms=min_interval,
        ),
        scope=str(settings.get("scope") or DEFAULT_SCOPE),
        tin=tin,
        config_id=config_id,
    )


def seed_integration_settings(
    session: Session,
    settings: dict[str, Any],
    clock: Clock | None = None,
    integration_type: str = LHDN_INTEGRATION_TYPE,
) -> IntegrationSetting:
    """
    Store ``settings`` as the active row for ``integration_type``.

    The payload is validated first; earlier active rows are deactivated,
    never deleted.  Flushes; the caller commits.
    """
    parse_integration_settings(settings)

    session.execute(
        update(IntegrationSetting)
        .where(IntegrationSetting.type == integration_type)
        .where(IntegrationSetting.is_active.is_(True))
        .values(is_active=False)
    )
    row = IntegrationSetting(
        type=integration_type,
        is_active=True,
        settings=dict(settings),
        created_at=(clock or SystemClock()).now(),
    )
    session.add(row)
    session.flush()
    logger.info(
        "integration_settings_seeded",
        extra={
            "config_id": str(row.id),
            "integration_type": integration_type,
            "checksum": compute_checksum(settings),
        },
    )
    return row
