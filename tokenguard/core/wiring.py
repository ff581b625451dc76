"""Build a :class:`TokenEngine` from Flask configuration."""

from __future__ import annotations

import logging

from flask import Flask

from tokenguard.services._shared.ports import (
    IdentityProvider,
    InMemoryIdentityProvider,
    InMemoryRefreshTokenStore,
    RefreshTokenStore,
)
from tokenguard.services.tokens import TokenConfig, TokenEngine

log = logging.getLogger(__name__)

STORE_BACKENDS = ("sqlalchemy", "redis", "memory")


def build_store(app: Flask) -> RefreshTokenStore:
    """
    Instantiate the refresh token store named by ``TOKENGUARD_STORE``.

    :raises RuntimeError: On an unknown backend name.
    """
    backend = str(app.config.get("TOKENGUARD_STORE", "sqlalchemy")).strip().lower()
    if backend == "sqlalchemy":
        from tokenguard.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore

        return SQLAlchemyRefreshTokenStore()
    if backend == "redis":
        from tokenguard.core.extensions import get_redis
        from tokenguard.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore

        return RedisRefreshTokenStore(get_redis())
    if backend == "memory":
        return InMemoryRefreshTokenStore()
    raise RuntimeError(
        f"Unknown TOKENGUARD_STORE {backend!r}; expected one of {', '.join(STORE_BACKENDS)}"
    )


def build_engine(app: Flask, identities: IdentityProvider | None = None) -> TokenEngine:
    """
    Wire store, JWT codec, identity provider and config into an engine.

    The host application is expected to pass its own identity provider; the
    in-memory default only suits tests and local experiments.
    """
    from tokenguard.infra.jwt.flask_jwt_access_token_codec import FlaskJWTAccessTokenCodec

    store = build_store(app)
    engine = TokenEngine(
        store=store,
        codec=FlaskJWTAccessTokenCodec(),
        identities=identities or InMemoryIdentityProvider(),
        cfg=TokenConfig.from_mapping(app.config),
    )
    log.info("tokenguard.engine_ready store=%s", type(store).__name__)
    return engine
