"""Pytest fixtures for the token engine.

Two layers are provided:

- In-memory doubles (store, identity provider, stub codec, fixed clock) for
  fast service tests that need no Flask application.
- A Flask application plus a per-test database schema on in-memory SQLite for
  the SQLAlchemy adapter, CLI and HTTP error handlers.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any

import fakeredis
import pytest

from tokenguard.core.config import TestingConfig
from tokenguard.core.extensions import db as _db  # Flask-SQLAlchemy instance
from tokenguard.factory import create_app  # application factory under test
from tokenguard.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from tokenguard.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore
from tokenguard.services._shared.ports import (
    AccessClaims,
    FixedClock,
    InMemoryIdentityProvider,
    InMemoryRefreshTokenStore,
    StubAccessTokenCodec,
)
from tokenguard.services.tokens import TokenConfig, TokenEngine


class TestConfig(TestingConfig):
    """Testing configuration for creating the Flask app.

    Notes
    -----
    - Uses an in-memory SQLite database for speed.
    - Never talks to Redis; Redis-backed tests use ``fakeredis``.
    """

    __test__ = False

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET_KEY = "test-jwt-secret-key-long-enough-for-hs256"
    LOG_LEVEL = "WARNING"
    TOKENGUARD_STORE = "sqlalchemy"


# ------------------------------ Domain doubles ------------------------------ #


@pytest.fixture()
def clock() -> FixedClock:
    """Clock frozen at 2025-01-01 12:00 UTC; advance it explicitly."""
    return FixedClock()


@pytest.fixture()
def identities() -> InMemoryIdentityProvider:
    """Identity directory knowing ``u1`` and ``u2``."""
    return InMemoryIdentityProvider(
        {
            "u1": AccessClaims(subject="u1", email="u1@example.com", username="u1", role="user"),
            "u2": AccessClaims(subject="u2", email="u2@example.com", username="u2", role="admin"),
        }
    )


@pytest.fixture()
def store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture()
def codec() -> StubAccessTokenCodec:
    return StubAccessTokenCodec()


@pytest.fixture()
def token_cfg() -> TokenConfig:
    return TokenConfig()


@pytest.fixture()
def engine(store, codec, identities, clock, token_cfg) -> TokenEngine:
    """Token engine wired to in-memory doubles."""
    return TokenEngine(
        store=store, codec=codec, identities=identities, cfg=token_cfg, clock=clock
    )


@pytest.fixture()
def fake_redis():
    """Provide a fresh FakeRedis instance for each test."""
    r = fakeredis.FakeRedis(decode_responses=True)
    r.flushall()
    return r


@pytest.fixture(params=["memory", "sqlalchemy", "redis"])
def any_store(request):
    """Every store adapter, so behavioural tests run against each backend."""
    if request.param == "memory":
        return InMemoryRefreshTokenStore()
    if request.param == "sqlalchemy":
        request.getfixturevalue("session")
        return SQLAlchemyRefreshTokenStore()
    return RedisRefreshTokenStore(r=request.getfixturevalue("fake_redis"))


# ------------------------------ Flask / database ---------------------------- #


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing."""
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    app = create_app(TestConfig)
    app.logger.setLevel("WARNING")
    return app


@pytest.fixture()
def session(app):
    """Provide the Flask-scoped session over a freshly created schema.

    The app context stays pushed for the whole test so repositories, stores
    and factories all share ``db.session``. Tables are dropped afterwards, so
    no rows leak between cases.
    """
    from tests.factories import SQLAlchemySession

    with app.app_context():
        _db.create_all()
        SQLAlchemySession.set(_db.session)
        try:
            yield _db.session
        finally:
            SQLAlchemySession.set(None)
            _db.session.remove()
            _db.drop_all()


@pytest.fixture(scope="session")
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk


@pytest.fixture()
def freeze_time() -> Callable[[str | None], Any]:
    """Factory returning :func:`freezegun.freeze_time`.

    Examples
    --------
    >>> def test_with_frozen_time(freeze_time):
    ...     with freeze_time("2025-01-01 12:00:00"):
    ...         ...
    """

    from freezegun import freeze_time as _freeze_time

    def _factory(target: str | None = None) -> Any:
        return _freeze_time(target or "2025-01-01 12:00:00")

    return _factory
