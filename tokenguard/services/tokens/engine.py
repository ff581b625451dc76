# tokenguard/services/tokens/engine.py
from __future__ import annotations

from datetime import datetime

from tokenguard.services._shared.base import ServiceContext
from tokenguard.services._shared.ports import (
    AccessClaims,
    AccessTokenCodec,
    Clock,
    IdentityProvider,
    RefreshTokenStore,
    SystemClock,
)
from tokenguard.services.tokens.dto import TokenConfig, TokenMetadata, TokenPair
from tokenguard.services.tokens.generator import SecureTokenGenerator
from tokenguard.services.tokens.handoff import HandoffTokenService
from tokenguard.services.tokens.inspector import TokenInspector
from tokenguard.services.tokens.issuer import TokenIssuer
from tokenguard.services.tokens.janitor import TokenJanitor
from tokenguard.services.tokens.revoker import TokenRevoker
from tokenguard.services.tokens.rotator import TokenRotator


class TokenEngine:
    """
    Facade over the token services, sharing one store, clock and config.

    Public operations
    -----------------
    * :meth:`issue` - new session after a successful login.
    * :meth:`rotate` - refresh; raises ``RefreshTokenError`` on rejection.
    * :meth:`revoke_one` / :meth:`revoke_all_for_user` - logout, never raise.
    * :meth:`purge_expired_or_revoked` - cron cleanup.

    The handoff and inspection services are reachable as :attr:`handoff` and
    :attr:`inspector`.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        codec: AccessTokenCodec,
        identities: IdentityProvider,
        cfg: TokenConfig | None = None,
        clock: Clock | None = None,
        generator: SecureTokenGenerator | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or TokenConfig()
        self.clock = clock or SystemClock()
        common = {"clock": self.clock, "ctx": ctx}

        self.issuer = TokenIssuer(
            store=store,
            codec=codec,
            identities=identities,
            generator=generator,
            cfg=self.cfg,
            **common,
        )
        self.revoker = TokenRevoker(store=store, **common)
        self.rotator = TokenRotator(
            store=store, issuer=self.issuer, revoker=self.revoker, cfg=self.cfg, **common
        )
        self.janitor = TokenJanitor(store=store, **common)
        self.handoff = HandoffTokenService(store=store, issuer=self.issuer, **common)
        self.inspector = TokenInspector(store=store, **common)

    def issue(
        self,
        user_id: str,
        claims: AccessClaims | None = None,
        metadata: TokenMetadata | None = None,
    ) -> TokenPair:
        return self.issuer.issue(user_id, claims, metadata)

    def rotate(
        self,
        token: str,
        metadata: TokenMetadata | None = None,
        *,
        deadline: datetime | None = None,
    ) -> TokenPair:
        return self.rotator.rotate(token, metadata, deadline=deadline)

    def revoke_one(self, token: str) -> None:
        self.revoker.revoke_one(token)

    def revoke_all_for_user(self, user_id: str) -> None:
        self.revoker.revoke_all_for_user(user_id)

    def purge_expired_or_revoked(self) -> int:
        return self.janitor.purge_expired_or_revoked()
