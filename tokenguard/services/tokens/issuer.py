# tokenguard/services/tokens/issuer.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.errors import FailureReason, RefreshTokenError
from tokenguard.services._shared.ports import (
    KIND_REFRESH,
    AccessClaims,
    AccessTokenCodec,
    Clock,
    IdentityProvider,
    RefreshTokenStore,
    RefreshTokenView,
)
from tokenguard.services.tokens.dto import TokenConfig, TokenMetadata, TokenPair
from tokenguard.services.tokens.generator import SecureTokenGenerator

log = logging.getLogger(__name__)


def build_record(
    generator: SecureTokenGenerator,
    *,
    user_id: str,
    metadata: TokenMetadata,
    now: datetime,
    ttl: timedelta,
    kind: str = KIND_REFRESH,
    parent: RefreshTokenView | None = None,
) -> RefreshTokenView:
    """
    Build a fresh, unused, unrevoked record bound to ``metadata``.

    :param parent: Record being superseded; sets ``parent_token`` and
        ``rotation_count = parent.rotation_count + 1``.
    """
    return RefreshTokenView(
        id=generator.new_id(),
        user_id=user_id,
        token=generator.generate(),
        expires_at=now + ttl,
        created_at=now,
        ip_address=metadata.ip_address,
        user_agent=metadata.user_agent,
        parent_token=parent.id if parent else None,
        rotation_count=parent.rotation_count + 1 if parent else 0,
        kind=kind,
    )


class TokenIssuer(BaseService):
    """
    Mint a brand-new session (root of a rotation chain).

    Issuance never inspects prior sessions: each login adds one more
    independent chain for the user.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        codec: AccessTokenCodec,
        identities: IdentityProvider,
        generator: SecureTokenGenerator | None = None,
        cfg: TokenConfig | None = None,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        """
        :param store: Refresh token persistence.
        :param codec: Access token signer.
        :param identities: Source of current claims when none are supplied.
        :param generator: Token/id source.
        :param cfg: Lifetimes.
        """
        super().__init__(clock=clock, ctx=ctx)
        self.store = store
        self.codec = codec
        self.identities = identities
        self.generator = generator or SecureTokenGenerator()
        self.cfg = cfg or TokenConfig()

    def resolve_claims(self, user_id: str) -> AccessClaims:
        """
        Look up current claims for ``user_id``.

        :raises RefreshTokenError: ``invalid_token`` when the identity is gone.
        """
        claims = self.identities.resolve(user_id)
        if claims is None:
            log.warning(
                "token.identity_unknown",
                extra=self.log_extra(user_id=user_id, reason=FailureReason.INVALID_TOKEN.value),
            )
            raise RefreshTokenError(FailureReason.INVALID_TOKEN)
        return claims

    def sign_access(self, claims: AccessClaims) -> str:
        return self.codec.encode(claims, expires_delta=self.cfg.access_expires)

    def issue(
        self,
        user_id: str,
        claims: AccessClaims | None = None,
        metadata: TokenMetadata | None = None,
    ) -> TokenPair:
        """
        Issue a fresh access/refresh pair for ``user_id``.

        The refresh record is persisted before the pair is returned, so a
        client never holds a token the store does not know.

        :param user_id: Owning identity.
        :param claims: Claims to embed; resolved from the identity provider if ``None``.
        :param metadata: Client binding captured at issuance.
        :returns: The new pair.
        :raises TokenCollisionError: If the generated value already exists.
        """
        metadata = metadata or TokenMetadata()
        claims = claims or self.resolve_claims(user_id)
        now = self.now_utc()

        record = build_record(
            self.generator,
            user_id=user_id,
            metadata=metadata,
            now=now,
            ttl=self.cfg.refresh_expires,
        )
        access = self.sign_access(claims)
        self.store.add(record)

        log.info("token.issued", extra=self.log_extra(user_id=user_id, token_id=record.id))
        return TokenPair(
            access_token=access,
            refresh_token=record.token,
            expires_in=self.cfg.access_expires_in,
        )
