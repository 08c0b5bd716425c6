"""
TokenAcquirer -- OAuth2 client-credentials exchange with the authority.

Responsibility:
    POSTs the configured credentials to ``{base_url}/connect/token``,
    turns the JSON answer into an AccessToken and hands it to the
    TokenStore.

Architecture position:
    Kernel > Services -- the only code that calls the token endpoint.

Invariants enforced:
    - ``expires_at = issued_at + expires_in`` with ``issued_at`` taken from
      the injected clock just before the request.
    - The request carries ``config.timeout_ms``.
    - No internal retry.

Failure modes:
    - AuthError on non-200, timeout, transport failure, unparseable body or
      a body without ``access_token``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from einvoice_kernel.domain.access_token import AccessToken
from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.integration_config import (
    DEFAULT_SCOPE,
    IntegrationConfig,
    normalize_base_url,
)
from einvoice_kernel.exceptions import AuthError
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.services.token_store import TokenStore

logger = get_logger("services.token_acquirer")

TOKEN_PATH = "/connect/token"

# Credential checks are interactive; they do not wait for the full call timeout.
CREDENTIAL_CHECK_TIMEOUT_MS = 10_000


@dataclass(frozen=True)
class CredentialCheck:
    """Result of a dry-run token exchange."""

    success: bool
    expires_in: int | None = None
    token_type: str | None = None
    scope: str | None = None
    error: str | None = None


def _upstream_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error_description", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    return str(body)[:500]


class TokenAcquirer:
    """
    Exchanges client credentials for an access token.

    Usage:
        acquirer = TokenAcquirer(httpx.Client(), store, clock)
        token = acquirer.acquire(config)
    """

    def __init__(self, http_client: httpx.Client, store: TokenStore, clock: Clock):
        self._http = http_client
        self._store = store
        self._clock = clock

    def _exchange(
        self,
        base_url: str,
        form: dict[str, str],
        timeout_ms: int,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{normalize_base_url(base_url)}{TOKEN_PATH}"
        try:
            response = self._http.post(
                url,
                data=form,
                headers=headers,
                timeout=timeout_ms / 1000,
            )
        except httpx.TimeoutException as exc:
            raise AuthError(
                f"Token request timed out after {timeout_ms}ms",
                upstream_message=str(exc) or None,
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthError(
                f"Token request failed: {exc}",
                upstream_message=str(exc) or None,
            ) from exc

        if response.status_code != 200:
            message = _upstream_message(response)
            raise AuthError(
                f"Token request rejected (HTTP {response.status_code}): {message}",
                status_code=response.status_code,
                upstream_message=message,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError(
                "Token response is not valid JSON",
                status_code=response.status_code,
                upstream_message=response.text[:500],
            ) from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthError(
                "Token response is missing 'access_token'",
                status_code=response.status_code,
            )
        return payload

    def acquire(self, config: IntegrationConfig) -> AccessToken:
        """
        Fetch a fresh token for ``config`` and store it.

        Raises:
            AuthError: The exchange failed for any reason.
        """
        form = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "grant_type": "client_credentials",
            "scope": config.scope,
        }
        headers = {"onbehalfof": config.tin} if config.tin else None

        logger.info(
            "token_requested",
            extra={
                "base_url": config.base_url,
                "environment": config.environment.value,
                "intermediary": bool(config.tin),
            },
        )
        issued_at = self._clock.now()
        payload = self._exchange(config.base_url, form, config.timeout_ms, headers)

        try:
            token = AccessToken.from_token_response(payload, issued_at)
        except ValueError as exc:
            raise AuthError(str(exc), status_code=200) from exc

        self._store.write(token)
        logger.info(
            "token_acquired",
            extra={
                "token": token.access_token,
                "expires_in": token.expires_in,
                "expires_at": token.expires_at,
            },
        )
        return token

    def validate_credentials(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        scope: str = DEFAULT_SCOPE,
        timeout_ms: int = CREDENTIAL_CHECK_TIMEOUT_MS,
    ) -> CredentialCheck:
        """Try the exchange without caching anything; never raises AuthError."""
        if not base_url or not client_id or not client_secret:
            return CredentialCheck(
                success=False, error="base URL, client id and client secret are required"
            )
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "client_credentials",
            "scope": scope,
        }
        try:
            payload = self._exchange(base_url, form, timeout_ms)
        except AuthError as exc:
            logger.warning(
                "credential_check_failed",
                extra={"base_url": base_url, "status_code": exc.status_code},
            )
            return CredentialCheck(success=False, error=str(exc))

        logger.info("credential_check_passed", extra={"base_url": base_url})
        try:
            expires_in = int(payload.get("expires_in"))
        except (TypeError, ValueError):
            expires_in = None
        return CredentialCheck(
            success=True,
            expires_in=expires_in,
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
        )
