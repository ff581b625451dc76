# tests/unit/services/test_rotator.py
"""
Rotation state machine: ordering of checks, reuse detection, binding rules,
lost races and deadlines.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta

import pytest

from tests.helpers.records import DESKTOP, NOW, make_record
from tests.helpers.utils import rejected
from tokenguard.services._shared.errors import FailureReason, RotationTimeoutError
from tokenguard.services._shared.ports import KIND_HANDOFF, InMemoryRefreshTokenStore
from tokenguard.services.tokens import TokenConfig, TokenEngine
from tokenguard.services.tokens.dto import TokenMetadata


# ------------------------------ Happy path ---------------------------------- #


def test_rotation_links_successor_and_marks_parent_used(engine, store, clock):
    pair = engine.issue("u1", metadata=DESKTOP)
    parent = store.find_by_token(pair.refresh_token)
    clock.advance(timedelta(hours=1))

    new_pair = engine.rotate(pair.refresh_token, DESKTOP)

    child = store.find_by_token(new_pair.refresh_token)
    assert child.rotation_count == parent.rotation_count + 1
    assert child.parent_token == parent.id
    assert child.expires_at == clock.now() + timedelta(days=7)
    assert child.is_used is False
    used = store.get(parent.id)
    assert used.is_used is True
    assert used.used_at == clock.now()
    assert new_pair.refresh_token != pair.refresh_token
    assert new_pair.expires_in == 900


def test_rotation_count_grows_along_the_chain(engine, store):
    pair = engine.issue("u1", metadata=DESKTOP)
    for _ in range(3):
        pair = engine.rotate(pair.refresh_token, DESKTOP)

    assert store.find_by_token(pair.refresh_token).rotation_count == 3


def test_rotation_reflects_current_claims(engine, identities, codec):
    pair = engine.issue("u1", metadata=DESKTOP)
    promoted = replace(identities.resolve("u1"), role="admin")
    identities.put(promoted)

    new_pair = engine.rotate(pair.refresh_token, DESKTOP)

    assert codec.decode(new_pair.access_token)["role"] == "admin"


def test_concrete_u1_scenario(engine, store):
    p1 = engine.issue("u1", None, DESKTOP)
    p2 = engine.rotate(p1.refresh_token, DESKTOP)
    assert store.find_by_token(p1.refresh_token).is_used is True

    with rejected(FailureReason.REUSE_DETECTED):
        engine.rotate(p1.refresh_token, DESKTOP)
    with rejected(FailureReason.TOKEN_REVOKED):
        engine.rotate(p2.refresh_token, DESKTOP)


# ------------------------------ Failures ------------------------------------ #


def test_unknown_token_is_invalid(engine):
    with rejected(FailureReason.INVALID_TOKEN):
        engine.rotate("0" * 64, DESKTOP)


def test_handoff_record_cannot_be_rotated(engine, store):
    record = make_record(kind=KIND_HANDOFF)
    store.add(record)

    with rejected(FailureReason.INVALID_TOKEN):
        engine.rotate(record.token, DESKTOP)
    assert store.get(record.id).is_used is False


def test_replay_revokes_every_token_of_the_user(engine, store):
    a = engine.issue("u1", metadata=DESKTOP)
    b = engine.rotate(a.refresh_token, DESKTOP)
    other_device = engine.issue("u1", metadata=TokenMetadata("10.9.9.9", "Phone"))
    bystander = engine.issue("u2", metadata=DESKTOP)

    with rejected(FailureReason.REUSE_DETECTED):
        engine.rotate(a.refresh_token, DESKTOP)

    assert all(r.is_revoked for r in store.list_for_user("u1"))
    assert store.find_by_token(b.refresh_token).revoked_reason == "reuse_detected"
    assert store.find_by_token(other_device.refresh_token).is_revoked is True
    assert store.find_by_token(bystander.refresh_token).is_revoked is False


def test_replay_is_logged_at_error(engine, caplog):
    a = engine.issue("u1", metadata=DESKTOP)
    engine.rotate(a.refresh_token, DESKTOP)

    with caplog.at_level(logging.WARNING, logger="tokenguard.services.tokens.rotator"):
        with rejected(FailureReason.REUSE_DETECTED):
            engine.rotate(a.refresh_token, DESKTOP)

    rejections = [r for r in caplog.records if r.getMessage() == "token.rejected"]
    assert len(rejections) == 1
    assert rejections[0].levelno == logging.ERROR
    assert rejections[0].reason == "reuse_detected"
    assert a.refresh_token not in caplog.text


def test_revoked_token_fails_even_if_pristine(engine, store):
    pair = engine.issue("u1", metadata=DESKTOP)
    engine.revoke_one(pair.refresh_token)

    with rejected(FailureReason.TOKEN_REVOKED):
        engine.rotate(pair.refresh_token, DESKTOP)
    assert store.find_by_token(pair.refresh_token).is_used is False


def test_revoked_wins_over_used(engine, store):
    record = make_record(is_used=True, is_revoked=True)
    sibling = make_record()
    store.add(record)
    store.add(sibling)

    with rejected(FailureReason.TOKEN_REVOKED):
        engine.rotate(record.token, DESKTOP)
    # No family revocation on the revoked branch.
    assert store.get(sibling.id).is_revoked is False


def test_token_expired_one_millisecond_ago(engine, store):
    record = make_record(expires_at=NOW - timedelta(milliseconds=1))
    store.add(record)

    with rejected(FailureReason.TOKEN_EXPIRED):
        engine.rotate(record.token, DESKTOP)


def test_token_expiring_exactly_now_is_expired(engine, store):
    record = make_record(expires_at=NOW)
    store.add(record)

    with rejected(FailureReason.TOKEN_EXPIRED):
        engine.rotate(record.token, DESKTOP)


def test_used_and_expired_still_triggers_family_revocation(engine, store):
    record = make_record(is_used=True, expires_at=NOW - timedelta(days=1))
    live = make_record()
    store.add(record)
    store.add(live)

    with rejected(FailureReason.REUSE_DETECTED):
        engine.rotate(record.token, DESKTOP)
    assert store.get(live.id).is_revoked is True


# ------------------------------ Metadata binding ---------------------------- #


def test_different_ip_is_a_mismatch(engine, store):
    pair = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.METADATA_MISMATCH):
        engine.rotate(pair.refresh_token, TokenMetadata("10.0.0.2", "UA1"))
    assert store.find_by_token(pair.refresh_token).is_used is False


@pytest.mark.parametrize(
    ("presented", "ok"),
    [
        ("UA1", True),
        ("UA1 (build 42)", True),
        ("ua1", False),
        ("XUA1", False),
        ("UA", False),
        (None, False),
    ],
)
def test_user_agent_prefix_rule(engine, presented, ok):
    pair = engine.issue("u1", metadata=DESKTOP)
    meta = TokenMetadata("10.0.0.1", presented)

    if ok:
        assert engine.rotate(pair.refresh_token, meta).refresh_token
    else:
        with rejected(FailureReason.METADATA_MISMATCH):
            engine.rotate(pair.refresh_token, meta)


def test_missing_presented_ip_is_a_mismatch(engine):
    pair = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.METADATA_MISMATCH):
        engine.rotate(pair.refresh_token, TokenMetadata(None, "UA1"))


def test_trailing_space_in_user_agent_is_kept_for_the_prefix_rule(engine, store):
    pair = engine.issue("u1", metadata=TokenMetadata("10.0.0.1", "Mozilla/5.0 "))

    assert store.find_by_token(pair.refresh_token).user_agent == "Mozilla/5.0 "
    with rejected(FailureReason.METADATA_MISMATCH):
        engine.rotate(pair.refresh_token, TokenMetadata("10.0.0.1", "Mozilla/5.0X"))
    assert engine.rotate(pair.refresh_token, TokenMetadata("10.0.0.1", "Mozilla/5.0 (X11)"))


@pytest.mark.parametrize("presented", [" 10.0.0.1", "10.0.0.1 ", "\t10.0.0.1"])
def test_padded_ip_is_not_equal_to_the_bound_one(engine, store, presented):
    pair = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.METADATA_MISMATCH):
        engine.rotate(pair.refresh_token, TokenMetadata(presented, "UA1"))
    assert store.find_by_token(pair.refresh_token).is_used is False


def test_unbound_record_skips_checks_with_warning(engine, caplog):
    pair = engine.issue("u1", metadata=TokenMetadata())

    with caplog.at_level(logging.WARNING, logger="tokenguard.services.tokens.rotator"):
        new_pair = engine.rotate(pair.refresh_token, TokenMetadata("1.2.3.4", "Anything"))

    assert new_pair.refresh_token
    fields = {r.field for r in caplog.records if r.getMessage() == "binding.unchecked"}
    assert fields == {"ip_address", "user_agent"}


def test_strict_binding_rejects_unbound_record(store, codec, identities, clock):
    strict = TokenEngine(
        store=store,
        codec=codec,
        identities=identities,
        cfg=TokenConfig(strict_binding=True),
        clock=clock,
    )
    pair = strict.issue("u1", metadata=TokenMetadata())

    with rejected(FailureReason.METADATA_MISMATCH):
        strict.rotate(pair.refresh_token, DESKTOP)


def test_successor_binds_to_presented_metadata(engine, store):
    pair = engine.issue("u1", metadata=DESKTOP)

    new_pair = engine.rotate(pair.refresh_token, TokenMetadata("10.0.0.1", "UA1 v2"))

    assert store.find_by_token(new_pair.refresh_token).user_agent == "UA1 v2"


# ------------------------------ Identity ------------------------------------ #


def test_unknown_identity_fails_without_mutation(engine, store, identities):
    pair = engine.issue("u1", metadata=DESKTOP)
    identities.remove("u1")

    with rejected(FailureReason.INVALID_TOKEN):
        engine.rotate(pair.refresh_token, DESKTOP)
    record = store.find_by_token(pair.refresh_token)
    assert record.is_used is False
    assert len(store.list_for_user("u1")) == 1


# ------------------------------ Races & deadlines --------------------------- #


class _RacingStore(InMemoryRefreshTokenStore):
    """Lets a competing request win between the rotator's read and its consume."""

    def __init__(self, *, revoke: bool = False) -> None:
        super().__init__()
        self.revoke = revoke

    def consume(self, token_id, *, now, successor=None):
        rival = self.get(token_id)
        if self.revoke:
            self.mark_revoked(rival.token, now=now, reason="logout")
        else:
            super().consume(token_id, now=now)
        return super().consume(token_id, now=now, successor=successor)


def _racing_engine(store, codec, identities, clock):
    return TokenEngine(store=store, codec=codec, identities=identities, clock=clock)


def test_lost_race_follows_reuse_branch(codec, identities, clock):
    store = _RacingStore()
    engine = _racing_engine(store, codec, identities, clock)
    pair = engine.issue("u1", metadata=DESKTOP)
    second = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.REUSE_DETECTED):
        engine.rotate(pair.refresh_token, DESKTOP)
    assert store.find_by_token(second.refresh_token).is_revoked is True
    # The loser's successor was never written.
    assert len(store.list_for_user("u1")) == 2


def test_lost_race_to_revocation_reports_revoked(codec, identities, clock):
    store = _RacingStore(revoke=True)
    engine = _racing_engine(store, codec, identities, clock)
    pair = engine.issue("u1", metadata=DESKTOP)

    with rejected(FailureReason.TOKEN_REVOKED):
        engine.rotate(pair.refresh_token, DESKTOP)


def test_passed_deadline_aborts_before_consuming(engine, store, clock):
    pair = engine.issue("u1", metadata=DESKTOP)

    with pytest.raises(RotationTimeoutError):
        engine.rotate(pair.refresh_token, DESKTOP, deadline=clock.now() - timedelta(seconds=1))

    record = store.find_by_token(pair.refresh_token)
    assert record.is_used is False
    assert len(store.list_for_user("u1")) == 1


def test_future_deadline_does_not_interfere(engine, clock):
    pair = engine.issue("u1", metadata=DESKTOP)

    new_pair = engine.rotate(
        pair.refresh_token, DESKTOP, deadline=clock.now() + timedelta(seconds=5)
    )

    assert new_pair.refresh_token
