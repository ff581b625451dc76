# tokenguard/services/tokens/inspector.py
from __future__ import annotations

from datetime import UTC

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services._shared.ports import (
    KIND_REFRESH,
    Clock,
    RefreshTokenStore,
    RefreshTokenView,
    TokenStatistics,
)
from tokenguard.services.tokens.dto import UserTokenStats


class TokenInspector(BaseService):
    """Read-only views over stored records for forensics and monitoring."""

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        clock: Clock | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self.store = store

    def lineage(self, token_id: str) -> list[RefreshTokenView]:
        """
        Return the chain from ``token_id`` back to its root, newest first.

        The walk stops early when an ancestor has already been purged.
        """
        chain: list[RefreshTokenView] = []
        seen: set[str] = set()
        current = self.store.get(token_id)
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            if current.parent_token is None:
                break
            current = self.store.get(current.parent_token)
        return chain

    def active_sessions(self, user_id: str) -> list[RefreshTokenView]:
        """Unrevoked, unused, unexpired refresh records of ``user_id``."""
        now = self.now_utc()
        return [
            r
            for r in self.store.list_for_user(user_id)
            if r.kind == KIND_REFRESH and r.is_active(now)
        ]

    def user_stats(self, user_id: str) -> UserTokenStats:
        now = self.now_utc()
        records = [r for r in self.store.list_for_user(user_id) if r.kind == KIND_REFRESH]
        return UserTokenStats(
            total=len(records),
            active=sum(1 for r in records if r.is_active(now)),
            used=sum(1 for r in records if r.is_used),
            revoked=sum(1 for r in records if r.is_revoked),
            expired=sum(1 for r in records if r.is_expired(now)),
        )

    def token_statistics(self) -> TokenStatistics:
        """
        System-wide refresh token counts for monitoring.

        "Today" starts at midnight UTC of the injected clock's current day.
        """
        now = self.now_utc()
        since = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        return self.store.statistics(now=now, since=since)
