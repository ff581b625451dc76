# tokenguard/services/tokens/janitor.py
from __future__ import annotations

import logging

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.ports import Clock, RefreshTokenStore

log = logging.getLogger(__name__)


class TokenJanitor(BaseService):
    """Periodic deletion of dead records (run from cron via ``flask tokens purge``)."""

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self.store = store

    def purge_expired_or_revoked(self) -> int:
        """
        Delete every record with ``expires_at < now`` or ``is_revoked``.

        Used-but-unexpired records survive so replay detection keeps working
        until the chain would have expired anyway.

        :returns: Number of records deleted.
        :raises Exception: Store errors propagate.
        """
        count = self.store.purge(now=self.now_utc())
        log.info("token.purged", extra=self.log_extra(count=count))
        return count
