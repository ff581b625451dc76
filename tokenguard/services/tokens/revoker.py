# tokenguard/services/tokens/revoker.py
from __future__ import annotations

import logging

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.ports import Clock, RefreshTokenStore, RefreshTokenView

log = logging.getLogger(__name__)

REASON_LOGOUT = "logout"
REASON_LOGOUT_ALL = "logout_all"
REASON_REUSE_DETECTED = "reuse_detected"


class TokenRevoker(BaseService):
    """
    Logout, logout-everywhere and family revocation.

    The two logout operations are best effort: a failing store is logged with
    its traceback and never surfaces to the caller.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self.store = store

    def revoke_one(self, token: str) -> None:
        """Revoke the record holding ``token``. Unknown or already revoked: no-op."""
        try:
            changed = self.store.mark_revoked(token, now=self.now_utc(), reason=REASON_LOGOUT)
        except Exception:
            log.exception("token.revoke_failed", extra=self.log_extra(reason=REASON_LOGOUT))
            return
        if changed:
            log.info("token.revoked", extra=self.log_extra(reason=REASON_LOGOUT))

    def revoke_all_for_user(self, user_id: str) -> None:
        """Revoke every non-revoked record of ``user_id``."""
        try:
            count = self.store.revoke_all_for_user(
                user_id, now=self.now_utc(), reason=REASON_LOGOUT_ALL
            )
        except Exception:
            log.exception(
                "token.revoke_all_failed",
                extra=self.log_extra(user_id=user_id, reason=REASON_LOGOUT_ALL),
            )
            return
        log.info(
            "token.revoked_all",
            extra=self.log_extra(user_id=user_id, reason=REASON_LOGOUT_ALL, count=count),
        )

    def revoke_family(self, record: RefreshTokenView) -> int:
        """
        Revoke the family of a replayed record.

        Matches every record of the same user, every sibling sharing the
        replayed record's parent, and every direct child of the replayed
        record. The parent clauses may reach records of other users; the user
        clause alone ends every session of the replayed record's owner.

        :param record: The record that was presented after being used.
        :returns: Number of records that changed.
        :raises Exception: Store errors propagate to the rotator.
        """
        count = self.store.revoke_family(
            user_id=record.user_id,
            parent_id=record.parent_token,
            token_id=record.id,
            now=self.now_utc(),
            reason=REASON_REUSE_DETECTED,
        )
        log.warning(
            "token.family_revoked",
            extra=self.log_extra(
                user_id=record.user_id,
                token_id=record.id,
                reason=REASON_REUSE_DETECTED,
                count=count,
            ),
        )
        return count
