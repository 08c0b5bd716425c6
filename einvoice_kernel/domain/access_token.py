"""
AccessToken -- immutable bearer token value with expiry arithmetic.

Responsibility:
    Represents one OAuth2 client-credentials token issued by the authority
    and answers "may this token still be used at time T?".

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.

Invariants enforced:
    - Frozen: a token is never mutated, only superseded by a newer one.
    - ``expires_at = issued_at + expires_in`` for tokens built from a
      token-endpoint response.
    - ``safe_expires_at = expires_at - SAFETY_BUFFER``; a token is usable
      only strictly before its safe expiry, so it never expires mid-request.

Failure modes:
    - ValueError from ``from_token_response`` when ``access_token`` is
      missing or ``expires_in`` is not a positive integer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

SAFETY_BUFFER = timedelta(minutes=5)

DEFAULT_TOKEN_TYPE = "Bearer"


@dataclass(frozen=True)
class AccessToken:
    """
    One bearer token and its validity window.

    Guarantees:
        - ``is_usable(now)`` is False from ``safe_expires_at`` onward.
        - Instances are hashable and compare by value.
    """

    access_token: str
    token_type: str
    expires_in: int
    scope: str | None
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls, payload: dict[str, Any], issued_at: datetime
    ) -> AccessToken:
        """Build a token from the authority's ``/connect/token`` JSON body."""
        access_token = str(payload.get("access_token") or "").strip()
        if not access_token:
            raise ValueError("Token response is missing 'access_token'")

        try:
            expires_in = int(payload.get("expires_in"))
        except (TypeError, ValueError):
            raise ValueError(
                f"Token response has invalid 'expires_in': {payload.get('expires_in')!r}"
            ) from None
        if expires_in <= 0:
            raise ValueError(f"Token response has non-positive 'expires_in': {expires_in}")

        return cls(
            access_token=access_token,
            token_type=str(payload.get("token_type") or DEFAULT_TOKEN_TYPE),
            expires_in=expires_in,
            scope=payload.get("scope"),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )

    @property
    def safe_expires_at(self) -> datetime:
        """Absolute expiry minus the pre-emptive refresh buffer."""
        return self.expires_at - SAFETY_BUFFER

    def is_usable(self, now: datetime) -> bool:
        """True while ``now`` is strictly before the safe expiry."""
        return now < self.safe_expires_at

    def seconds_remaining(self, now: datetime) -> int:
        """Whole seconds until absolute expiry (never negative)."""
        return max(0, int((self.expires_at - now).total_seconds()))
