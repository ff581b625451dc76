# tokenguard/services/tokens/dto.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

# ---------------------------- Input DTOs ---------------------------------- #


def _blank_to_none(value: str | None) -> str | None:
    # Only all-whitespace becomes None; anything else is kept verbatim.
    if value is None or not value.strip():
        return None
    return value


@dataclass(frozen=True, slots=True)
class TokenMetadata:
    """
    Client characteristics observed on the current request.

    Blank (all-whitespace) strings are normalized to ``None`` so "header sent
    but empty" and "header missing" bind identically. Other values are stored
    and compared exactly as received.

    :param ip_address: Client IP address.
    :type ip_address: str | None
    :param user_agent: Raw ``User-Agent`` header.
    :type user_agent: str | None
    :param session_id: Optional caller-side session correlation id (not bound).
    :type session_id: str | None
    """

    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip_address", _blank_to_none(self.ip_address))
        object.__setattr__(self, "user_agent", _blank_to_none(self.user_agent))
        object.__setattr__(self, "session_id", _blank_to_none(self.session_id))


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPair:
    """
    Access/refresh pair returned to the caller.

    :param access_token: Signed short-lived access token.
    :type access_token: str
    :param refresh_token: Opaque refresh token value.
    :type refresh_token: str
    :param expires_in: Access token lifetime in seconds.
    :type expires_in: int
    """

    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True, slots=True)
class UserTokenStats:
    """Per-user record counts. Categories may overlap (a used token can also be expired)."""

    total: int
    active: int
    used: int
    revoked: int
    expired: int


# ------------------------------- Config ----------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenConfig:
    """
    Lifetimes and binding policy of the token engine.

    :param access_expires: Access token lifetime.
    :type access_expires: timedelta
    :param refresh_expires: Refresh token lifetime.
    :type refresh_expires: timedelta
    :param handoff_expires: Social-login handoff token lifetime.
    :type handoff_expires: timedelta
    :param strict_binding: Reject rotation when the stored IP/user-agent is missing.
    :type strict_binding: bool
    """

    access_expires: timedelta = timedelta(seconds=900)
    refresh_expires: timedelta = timedelta(days=7)
    handoff_expires: timedelta = timedelta(seconds=60)
    strict_binding: bool = False

    @property
    def access_expires_in(self) -> int:
        """Access lifetime in whole seconds, as reported in :class:`TokenPair`."""
        return int(self.access_expires.total_seconds())

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> TokenConfig:
        """
        Build the config from a Flask-style mapping of ``TOKENGUARD_*`` keys.

        Missing keys fall back to the dataclass defaults.
        """
        defaults = cls()
        access = config.get("TOKENGUARD_ACCESS_TTL_SECONDS")
        refresh = config.get("TOKENGUARD_REFRESH_TTL_DAYS")
        handoff = config.get("TOKENGUARD_HANDOFF_TTL_SECONDS")
        return cls(
            access_expires=(
                timedelta(seconds=int(access)) if access is not None else defaults.access_expires
            ),
            refresh_expires=(
                timedelta(days=int(refresh)) if refresh is not None else defaults.refresh_expires
            ),
            handoff_expires=(
                timedelta(seconds=int(handoff))
                if handoff is not None
                else defaults.handoff_expires
            ),
            strict_binding=bool(config.get("TOKENGUARD_STRICT_BINDING", False)),
        )
