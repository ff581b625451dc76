"""
tokenguard.services._shared.ports
=================================

Collection of *ports* (hexagonal interfaces) that define the contracts for
refresh-token persistence, access-token signing, identity lookup and time.

These ports decouple the token services from concrete implementations of
storage, JWT signing and user directories.

Modules
-------
- :mod:`access_token_codec`:
    Defines :class:`~.AccessTokenCodec` — abstraction for access-token signing/verification.

- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore` and :class:`~.RefreshTokenView` —
    abstractions for refresh-token persistence with atomic consumption.

- :mod:`identity_provider`:
    Defines :class:`~.IdentityProvider` and :class:`~.AccessClaims`.

- :mod:`clock`:
    Defines :class:`~.Clock` with system and fixed implementations.

Design Notes
------------
Concrete adapters (SQLAlchemy, Redis, flask-jwt-extended) implement these
interfaces under ``tokenguard.infra``. Each port ships an in-memory double used
by unit tests.
"""

from __future__ import annotations

from .access_token_codec import AccessTokenCodec, StubAccessTokenCodec
from .clock import Clock, FixedClock, SystemClock
from .identity_provider import AccessClaims, IdentityProvider, InMemoryIdentityProvider
from .refresh_token_store import (
    KIND_HANDOFF,
    KIND_REFRESH,
    InMemoryRefreshTokenStore,
    RefreshTokenStore,
    RefreshTokenView,
    TokenStatistics,
)

__all__ = [
    "AccessTokenCodec",
    "StubAccessTokenCodec",
    "Clock",
    "SystemClock",
    "FixedClock",
    "AccessClaims",
    "IdentityProvider",
    "InMemoryIdentityProvider",
    "RefreshTokenStore",
    "RefreshTokenView",
    "InMemoryRefreshTokenStore",
    "TokenStatistics",
    "KIND_REFRESH",
    "KIND_HANDOFF",
]
