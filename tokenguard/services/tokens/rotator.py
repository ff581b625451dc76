# tokenguard/services/tokens/rotator.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import NoReturn

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.errors import (
    FailureReason,
    RefreshTokenError,
    RotationTimeoutError,
)
from tokenguard.services._shared.ports import (
    KIND_REFRESH,
    Clock,
    RefreshTokenStore,
    RefreshTokenView,
)
from tokenguard.services.tokens.dto import TokenConfig, TokenMetadata, TokenPair
from tokenguard.services.tokens.issuer import TokenIssuer, build_record
from tokenguard.services.tokens.revoker import TokenRevoker

log = logging.getLogger(__name__)


class TokenRotator(BaseService):
    """
    Exchange a valid refresh token for a new pair, retiring the old one.

    State checks run in a fixed order and the first failure wins:

    1. unknown token (or not a refresh record) -> ``invalid_token``
    2. revoked -> ``token_revoked``
    3. already used -> family revocation, then ``reuse_detected``
    4. ``expires_at <= now`` -> ``token_expired``
    5. IP differs from the one bound at issuance -> ``metadata_mismatch``
    6. user-agent does not start with the bound one -> ``metadata_mismatch``

    The used check precedes the expiry check, so replaying a consumed token
    after it expired still revokes the family.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        issuer: TokenIssuer,
        revoker: TokenRevoker,
        cfg: TokenConfig | None = None,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        """
        :param store: Refresh token persistence (atomic ``consume``).
        :param issuer: Supplies claims lookup, signing and the token generator.
        :param revoker: Performs family revocation on replay.
        :param cfg: Lifetimes and binding policy.
        """
        super().__init__(clock=clock, ctx=ctx)
        self.store = store
        self.issuer = issuer
        self.revoker = revoker
        self.cfg = cfg or issuer.cfg

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def rotate(
        self,
        presented_token: str,
        metadata: TokenMetadata | None = None,
        *,
        deadline: datetime | None = None,
    ) -> TokenPair:
        """
        Rotate ``presented_token``.

        :param presented_token: Opaque refresh token sent by the client.
        :param metadata: Client binding observed on this request.
        :param deadline: Absolute instant after which the atomic step is not attempted.
        :returns: New access/refresh pair.
        :raises RefreshTokenError: On any rejection (see class docstring).
        :raises RotationTimeoutError: If ``deadline`` passed before the atomic step.
        """
        metadata = metadata or TokenMetadata()
        now = self.now_utc()

        record = self.store.find_by_token(presented_token)
        if record is None or record.kind != KIND_REFRESH:
            self._reject(FailureReason.INVALID_TOKEN, record)

        self._check_state(record, now)
        self._check_binding(record, metadata)

        claims = self.issuer.resolve_claims(record.user_id)
        successor = build_record(
            self.issuer.generator,
            user_id=record.user_id,
            metadata=metadata,
            now=now,
            ttl=self.cfg.refresh_expires,
            parent=record,
        )
        access = self.issuer.sign_access(claims)

        if deadline is not None and self.now_utc() >= deadline:
            log.warning("token.rotation_timeout", extra=self.log_extra(token_id=record.id))
            raise RotationTimeoutError()

        if not self.store.consume(record.id, now=now, successor=successor):
            # Lost the race: someone else consumed or revoked it since our read.
            current = self.store.get(record.id)
            if current is None:
                self._reject(FailureReason.INVALID_TOKEN, record)
            if current.is_revoked:
                self._reject(FailureReason.TOKEN_REVOKED, current)
            self._on_reuse(current)

        log.info(
            "token.rotated",
            extra=self.log_extra(
                user_id=record.user_id,
                token_id=successor.id,
                rotation_count=successor.rotation_count,
            ),
        )
        return TokenPair(
            access_token=access,
            refresh_token=successor.token,
            expires_in=self.cfg.access_expires_in,
        )

    # ------------------------------------------------------------------ #
    # Checks
    # ------------------------------------------------------------------ #

    def _check_state(self, record: RefreshTokenView, now: datetime) -> None:
        if record.is_revoked:
            self._reject(FailureReason.TOKEN_REVOKED, record)
        if record.is_used:
            self._on_reuse(record)
        if record.is_expired(now):
            self._reject(FailureReason.TOKEN_EXPIRED, record)

    def _check_binding(self, record: RefreshTokenView, metadata: TokenMetadata) -> None:
        if not self._ip_matches(record, metadata.ip_address):
            self._reject(FailureReason.METADATA_MISMATCH, record, field="ip_address")
        if not self._user_agent_matches(record, metadata.user_agent):
            self._reject(FailureReason.METADATA_MISMATCH, record, field="user_agent")

    def _unbound(self, record: RefreshTokenView, field: str) -> bool:
        """Stored value missing: accept (with a warning) unless binding is strict."""
        if self.cfg.strict_binding:
            return False
        log.warning(
            "binding.unchecked",
            extra=self.log_extra(user_id=record.user_id, token_id=record.id, field=field),
        )
        return True

    def _ip_matches(self, record: RefreshTokenView, presented: str | None) -> bool:
        if record.ip_address is None:
            return self._unbound(record, "ip_address")
        return presented is not None and presented == record.ip_address

    def _user_agent_matches(self, record: RefreshTokenView, presented: str | None) -> bool:
        # Exact, case-sensitive prefix match; no normalization.
        if record.user_agent is None:
            return self._unbound(record, "user_agent")
        return presented is not None and presented.startswith(record.user_agent)

    # ------------------------------------------------------------------ #
    # Failure paths
    # ------------------------------------------------------------------ #

    def _on_reuse(self, record: RefreshTokenView) -> NoReturn:
        self.revoker.revoke_family(record)
        self._reject(FailureReason.REUSE_DETECTED, record)

    def _reject(
        self,
        reason: FailureReason,
        record: RefreshTokenView | None,
        *,
        field: str | None = None,
    ) -> NoReturn:
        extra = self.log_extra(
            reason=reason.value,
            user_id=record.user_id if record else None,
            token_id=record.id if record else None,
        )
        if field is not None:
            extra["field"] = field
        level = log.error if reason is FailureReason.REUSE_DETECTED else log.warning
        level("token.rejected", extra=extra)
        raise RefreshTokenError(reason)
