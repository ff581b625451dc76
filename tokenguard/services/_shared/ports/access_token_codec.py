from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from .identity_provider import AccessClaims


class AccessTokenCodec(Protocol):
    """Port for signing and verifying short-lived access tokens."""

    def encode(self, claims: AccessClaims, *, expires_delta: timedelta) -> str: ...

    def decode(self, token: str) -> dict[str, Any]: ...


class StubAccessTokenCodec(AccessTokenCodec):
    """Deterministic codec used in unit tests (no signing)."""

    def __init__(self) -> None:
        self._now = datetime.now(tz=UTC)
        self._seq = 0
        self._issued: dict[str, dict[str, Any]] = {}

    def encode(self, claims: AccessClaims, *, expires_delta: timedelta) -> str:
        self._seq += 1
        token = f"access.{claims.subject}.{self._seq}"
        payload: dict[str, Any] = {
            "sub": claims.subject,
            "type": "access",
            "exp": int((self._now + expires_delta).timestamp()),
        }
        payload.update(claims.as_additional_claims())
        self._issued[token] = payload
        return token

    def decode(self, token: str) -> dict[str, Any]:
        return self._issued[token]
