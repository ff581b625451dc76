"""Factory Boy definition for :class:`tokenguard.models.refresh_token.RefreshToken`."""

from __future__ import annotations

import secrets
from datetime import timedelta
from uuid import uuid4

import factory

from tests.factories import BaseFactory
from tests.helpers.records import NOW
from tokenguard.models.refresh_token import RefreshToken


class RefreshTokenFactory(BaseFactory):
    """
    Build persisted, live refresh token rows.

    Use traits for the common dead states::

        RefreshTokenFactory(expired=True)
        RefreshTokenFactory(revoked=True)
    """

    class Meta:
        model = RefreshToken

    id = factory.LazyFunction(lambda: uuid4().hex)
    user_id = factory.Sequence(lambda n: f"user-{n}")
    token = factory.LazyFunction(lambda: secrets.token_hex(32))
    created_at = NOW
    expires_at = factory.LazyAttribute(lambda o: o.created_at + timedelta(days=7))
    ip_address = factory.Faker("ipv4")
    user_agent = factory.Faker("user_agent")
    is_used = False
    is_revoked = False
    parent_token = None
    rotation_count = 0
    kind = "refresh"

    class Params:
        expired = factory.Trait(
            expires_at=factory.LazyAttribute(lambda o: o.created_at - timedelta(minutes=1))
        )
        revoked = factory.Trait(is_revoked=True, revoked_at=NOW, revoked_reason="logout")
        used = factory.Trait(is_used=True, used_at=NOW)
