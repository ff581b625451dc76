from __future__ import annotations

import re
from datetime import timedelta

import pytest

from tests.helpers.records import DESKTOP, make_record
from tests.helpers.utils import rejected
from tokenguard.services._shared.errors import FailureReason, TokenCollisionError
from tokenguard.services._shared.ports import (
    KIND_HANDOFF,
    KIND_REFRESH,
    InMemoryRefreshTokenStore,
)
from tokenguard.services.tokens import TokenEngine
from tokenguard.services.tokens.generator import SecureTokenGenerator


def test_create_persists_short_lived_handoff_record(engine, store, clock):
    token = engine.handoff.create("u1", DESKTOP)

    assert re.fullmatch(r"[0-9a-f]{64}", token)
    record = store.find_by_token(token)
    assert record.kind == KIND_HANDOFF
    assert record.expires_at == clock.now() + timedelta(seconds=60)


def test_redeem_issues_a_fresh_root_session(engine, store, codec):
    token = engine.handoff.create("u1", DESKTOP)

    pair = engine.handoff.redeem(token, DESKTOP)

    assert store.find_by_token(token).is_used is True
    session = store.find_by_token(pair.refresh_token)
    assert session.kind == "refresh"
    assert session.parent_token is None
    assert session.rotation_count == 0
    assert codec.decode(pair.access_token)["sub"] == "u1"
    # The session it yields rotates like any login.
    assert engine.rotate(pair.refresh_token, DESKTOP).refresh_token


def test_second_redeem_is_reuse_and_revokes_only_the_handoff(engine, store):
    token = engine.handoff.create("u1", DESKTOP)
    pair = engine.handoff.redeem(token, DESKTOP)

    with rejected(FailureReason.REUSE_DETECTED):
        engine.handoff.redeem(token, DESKTOP)

    assert store.find_by_token(token).is_revoked is True
    assert store.find_by_token(pair.refresh_token).is_revoked is False


def test_expired_handoff_is_rejected(engine, clock):
    token = engine.handoff.create("u1", DESKTOP)
    clock.advance(timedelta(seconds=61))

    with rejected(FailureReason.TOKEN_EXPIRED):
        engine.handoff.redeem(token, DESKTOP)


def test_refresh_token_cannot_be_redeemed_as_handoff(engine):
    pair = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.INVALID_TOKEN):
        engine.handoff.redeem(pair.refresh_token, DESKTOP)


def test_revoked_handoff_is_rejected(engine, store):
    record = make_record(kind=KIND_HANDOFF, is_revoked=True)
    store.add(record)

    with rejected(FailureReason.TOKEN_REVOKED):
        engine.handoff.redeem(record.token, DESKTOP)


def test_unknown_identity_leaves_handoff_unused(engine, store, identities):
    token = engine.handoff.create("u1", DESKTOP)
    identities.remove("u1")

    with rejected(FailureReason.INVALID_TOKEN):
        engine.handoff.redeem(token, DESKTOP)
    assert store.find_by_token(token).is_used is False


def test_janitor_purges_expired_handoffs(engine, store, clock):
    token = engine.handoff.create("u1", DESKTOP)
    clock.advance(timedelta(minutes=5))

    assert engine.purge_expired_or_revoked() == 1
    assert store.find_by_token(token) is None


class _FlakyStore(InMemoryRefreshTokenStore):
    """Fails the first insert of a refresh record, like a dropped connection."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def _insert(self, record):
        if record.kind == KIND_REFRESH and self.failures:
            self.failures -= 1
            raise ConnectionError("store down")
        super()._insert(record)


def test_failed_session_write_leaves_handoff_redeemable(codec, identities, clock):
    """
    GIVEN a handoff token
    WHEN persisting the new session fails during redeem
    THEN the handoff stays unused and a retry succeeds.
    """
    store = _FlakyStore()
    engine = TokenEngine(store=store, codec=codec, identities=identities, clock=clock)
    token = engine.handoff.create("u1", DESKTOP)

    with pytest.raises(ConnectionError):
        engine.handoff.redeem(token, DESKTOP)

    assert store.find_by_token(token).is_used is False
    assert [r.kind for r in store.list_for_user("u1")] == [KIND_HANDOFF]

    pair = engine.handoff.redeem(token, DESKTOP)
    assert store.find_by_token(pair.refresh_token).kind == KIND_REFRESH


def test_session_collision_on_redeem_keeps_handoff_unused(any_store, codec, identities, clock):
    engine = TokenEngine(store=any_store, codec=codec, identities=identities, clock=clock)
    existing = engine.issue("u1", metadata=DESKTOP)
    token = engine.handoff.create("u1", DESKTOP)
    engine.issuer.generator = _Replaying(existing.refresh_token)

    with pytest.raises(TokenCollisionError):
        engine.handoff.redeem(token, DESKTOP)

    assert any_store.find_by_token(token).is_used is False


class _Replaying(SecureTokenGenerator):
    """Hands out a token value that already exists in the store."""

    def __init__(self, value: str) -> None:
        self._value = value

    def generate(self) -> str:
        return self._value
