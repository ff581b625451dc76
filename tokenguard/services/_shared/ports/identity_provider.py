from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class AccessClaims:
    """
    Identity claims embedded in an access token.

    :ivar subject: Opaque user id (JWT ``sub``).
    :ivar email: Current email address.
    :ivar username: Public handle.
    :ivar role: Authorization role (e.g. ``"user"``, ``"admin"``).
    """

    subject: str
    email: str
    username: str
    role: str

    def as_additional_claims(self) -> dict[str, str]:
        """Return the non-subject claims as a plain mapping for the codec."""
        return {"email": self.email, "username": self.username, "role": self.role}


class IdentityProvider(Protocol):
    """
    Port resolving a user id to its *current* claims.

    Claims are looked up on every issuance and rotation so role or email
    changes are reflected without waiting for a new login.
    """

    def resolve(self, user_id: str) -> AccessClaims | None:
        """Return current claims, or ``None`` when the identity no longer exists."""


class InMemoryIdentityProvider(IdentityProvider):
    """Dictionary-backed identity provider for unit tests and local wiring."""

    def __init__(self, identities: dict[str, AccessClaims] | None = None) -> None:
        self._identities: dict[str, AccessClaims] = dict(identities or {})

    def put(self, claims: AccessClaims) -> None:
        self._identities[claims.subject] = claims

    def remove(self, user_id: str) -> None:
        self._identities.pop(user_id, None)

    def resolve(self, user_id: str) -> AccessClaims | None:
        return self._identities.get(user_id)
