# tokenguard/services/tokens/handoff.py
from __future__ import annotations

import logging
from typing import NoReturn

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.errors import FailureReason, RefreshTokenError
from tokenguard.services._shared.ports import KIND_HANDOFF, Clock, RefreshTokenStore
from tokenguard.services.tokens.dto import TokenMetadata, TokenPair
from tokenguard.services.tokens.issuer import TokenIssuer, build_record
from tokenguard.services.tokens.revoker import REASON_REUSE_DETECTED

log = logging.getLogger(__name__)


class HandoffTokenService(BaseService):
    """
    One-shot tokens bridging an external (social) login redirect to a session.

    After the identity provider callback the web tier creates a handoff token
    and redirects the browser with it; the SPA then redeems it once for a
    regular token pair. Handoff records live in the refresh token store with
    ``kind="handoff"`` and a short TTL, so they are purged like any other
    record and can never be rotated.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        issuer: TokenIssuer,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self.store = store
        self.issuer = issuer

    def create(self, user_id: str, metadata: TokenMetadata | None = None) -> str:
        """
        Persist a handoff record for ``user_id``.

        :returns: The opaque handoff token value.
        """
        record = build_record(
            self.issuer.generator,
            user_id=user_id,
            metadata=metadata or TokenMetadata(),
            now=self.now_utc(),
            ttl=self.issuer.cfg.handoff_expires,
            kind=KIND_HANDOFF,
        )
        self.store.add(record)
        log.info("handoff.created", extra=self.log_extra(user_id=user_id, token_id=record.id))
        return record.token

    def redeem(self, token: str, metadata: TokenMetadata | None = None) -> TokenPair:
        """
        Exchange a handoff token for a fresh session.

        :raises RefreshTokenError: ``invalid_token`` (unknown, not a handoff
            record, or unknown identity), ``token_revoked``, ``reuse_detected``
            (the handoff record is revoked) or ``token_expired``.
        """
        now = self.now_utc()
        record = self.store.find_by_token(token)
        if record is None or record.kind != KIND_HANDOFF:
            self._reject(FailureReason.INVALID_TOKEN)
        if record.is_revoked:
            self._reject(FailureReason.TOKEN_REVOKED, record.user_id)
        if record.is_used:
            self._replayed(token, record.user_id)
        if record.is_expired(now):
            self._reject(FailureReason.TOKEN_EXPIRED, record.user_id)

        claims = self.issuer.resolve_claims(record.user_id)
        session = build_record(
            self.issuer.generator,
            user_id=record.user_id,
            metadata=metadata or TokenMetadata(),
            now=now,
            ttl=self.issuer.cfg.refresh_expires,
        )
        access = self.issuer.sign_access(claims)

        # Burning the handoff and creating the session is one atomic step.
        if not self.store.consume(record.id, now=now, successor=session):
            self._replayed(token, record.user_id)

        log.info(
            "handoff.redeemed",
            extra=self.log_extra(user_id=record.user_id, token_id=session.id),
        )
        return TokenPair(
            access_token=access,
            refresh_token=session.token,
            expires_in=self.issuer.cfg.access_expires_in,
        )

    def _replayed(self, token: str, user_id: str) -> NoReturn:
        self.store.mark_revoked(token, now=self.now_utc(), reason=REASON_REUSE_DETECTED)
        self._reject(FailureReason.REUSE_DETECTED, user_id)

    def _reject(self, reason: FailureReason, user_id: str | None = None) -> NoReturn:
        level = log.error if reason is FailureReason.REUSE_DETECTED else log.warning
        level("handoff.rejected", extra=self.log_extra(reason=reason.value, user_id=user_id))
        raise RefreshTokenError(reason)
