# comments in English; reST docstrings
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenguard.services._shared.errors import TokenCollisionError
from tokenguard.services._shared.ports import (
    RefreshTokenStore,
    RefreshTokenView,
    TokenStatistics,
)

log = logging.getLogger(__name__)


def _s(value: Any, default: str = "") -> str:
    # Works with and without ``decode_responses=True``.
    if value is None:
        return default
    if isinstance(value, bytes | bytearray):
        return value.decode()
    return str(value)


def _dt(value: str) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _opt(value: str) -> str | None:
    return value or None


@dataclass(slots=True)
class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh token store with atomic consumption.

    Key layout:

    * ``rt:{id}``: hash holding every record field (ISO-8601 instants).
    * ``rt:tok:{token}``: token value → record id, created with ``NX``.
    * ``rt:u:{user_id}``: set of record ids owned by the user.
    * ``rt:p:{parent_id}``: set of record ids whose parent is ``parent_id``.
    * ``rt:all``: set of every record id, walked by :meth:`purge`.

    Keys carry no TTL; expired records are removed by the janitor.

    :param r: A Redis client (already connected).
    """

    r: redis.Redis

    # -------------------- helpers --------------------

    @staticmethod
    def _k(token_id: str) -> str:
        return f"rt:{token_id}"

    @staticmethod
    def _kt(token: str) -> str:
        return f"rt:tok:{token}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"rt:u:{user_id}"

    @staticmethod
    def _kp(parent_id: str) -> str:
        return f"rt:p:{parent_id}"

    _KALL = "rt:all"

    @staticmethod
    def _mapping(record: RefreshTokenView) -> dict[str, str]:
        def iso(value: datetime | None) -> str:
            return value.isoformat() if value else ""

        return {
            "user_id": record.user_id,
            "token": record.token,
            "expires_at": iso(record.expires_at),
            "created_at": iso(record.created_at),
            "ip_address": record.ip_address or "",
            "user_agent": record.user_agent or "",
            "used": "1" if record.is_used else "0",
            "revoked": "1" if record.is_revoked else "0",
            "parent_token": record.parent_token or "",
            "rotation_count": str(record.rotation_count),
            "used_at": iso(record.used_at),
            "revoked_at": iso(record.revoked_at),
            "revoked_reason": record.revoked_reason or "",
            "kind": record.kind,
        }

    @staticmethod
    def _view(token_id: str, raw: Mapping[Any, Any]) -> RefreshTokenView:
        h = {_s(k): _s(v) for k, v in raw.items()}
        return RefreshTokenView(
            id=token_id,
            user_id=h.get("user_id", ""),
            token=h.get("token", ""),
            expires_at=datetime.fromisoformat(h["expires_at"]),
            created_at=datetime.fromisoformat(h["created_at"]),
            ip_address=_opt(h.get("ip_address", "")),
            user_agent=_opt(h.get("user_agent", "")),
            is_used=h.get("used", "0") == "1",
            is_revoked=h.get("revoked", "0") == "1",
            parent_token=_opt(h.get("parent_token", "")),
            rotation_count=int(h.get("rotation_count", "0") or 0),
            used_at=_dt(h.get("used_at", "")),
            revoked_at=_dt(h.get("revoked_at", "")),
            revoked_reason=_opt(h.get("revoked_reason", "")),
            kind=h.get("kind", "refresh") or "refresh",
        )

    def _queue_insert(self, p: Any, record: RefreshTokenView) -> None:
        p.hset(self._k(record.id), mapping=self._mapping(record))
        p.set(self._kt(record.token), record.id)
        p.sadd(self._ku(record.user_id), record.id)
        if record.parent_token:
            p.sadd(self._kp(record.parent_token), record.id)
        p.sadd(self._KALL, record.id)

    def _members(self, key: str) -> set[str]:
        return {_s(m) for m in self.r.smembers(key)}

    def _revoke_ids(
        self,
        ids: Iterable[str] = (),
        *,
        now: datetime,
        reason: str,
        index_keys: Sequence[str] = (),
    ) -> int:
        """
        Flag records revoked under WATCH; returns how many actually changed.

        Members of ``index_keys`` are read inside the transaction, so a record
        added to one of those sets before ``EXEC`` aborts it and is picked up
        by the retry.
        """
        fixed = set(ids)
        while True:
            try:
                with self.r.pipeline() as p:
                    if index_keys:
                        p.watch(*index_keys)
                    found = set(fixed)
                    for key in index_keys:
                        found |= {_s(m) for m in p.smembers(key)}
                    keys = [self._k(i) for i in sorted(found)]
                    if not keys:
                        p.unwatch()
                        return 0
                    p.watch(*keys)
                    live = [
                        k
                        for k in keys
                        if p.exists(k) and _s(p.hget(k, "revoked"), "0") != "1"
                    ]
                    if not live:
                        p.unwatch()
                        return 0
                    p.multi()
                    for k in live:
                        p.hset(
                            k,
                            mapping={
                                "revoked": "1",
                                "revoked_at": now.isoformat(),
                                "revoked_reason": reason,
                            },
                        )
                    p.execute()
                    return len(live)
            except redis.WatchError:
                # Concurrent modification detected; retry loop
                continue

    # -------------------- API ------------------------

    def add(self, record: RefreshTokenView) -> None:
        # Reserve the token value first so a duplicate never overwrites a live mapping.
        if not self.r.set(self._kt(record.token), record.id, nx=True):
            raise TokenCollisionError(token_id=record.id)
        with self.r.pipeline(transaction=True) as p:
            self._queue_insert(p, record)
            p.execute()

    def get(self, token_id: str) -> RefreshTokenView | None:
        raw = self.r.hgetall(self._k(token_id))
        return self._view(token_id, raw) if raw else None

    def find_by_token(self, token: str) -> RefreshTokenView | None:
        token_id = self.r.get(self._kt(token))
        return self.get(_s(token_id)) if token_id else None

    def list_for_user(self, user_id: str) -> list[RefreshTokenView]:
        views = [v for v in (self.get(i) for i in self._members(self._ku(user_id))) if v]
        return sorted(views, key=lambda v: (v.created_at, v.rotation_count))

    def list_children(self, parent_id: str) -> list[RefreshTokenView]:
        views = [v for v in (self.get(i) for i in self._members(self._kp(parent_id))) if v]
        return sorted(views, key=lambda v: v.created_at)

    def consume(
        self,
        token_id: str,
        *,
        now: datetime,
        successor: RefreshTokenView | None = None,
    ) -> bool:
        """
        Atomically mark ``token_id`` used and create ``successor``.

        Uses WATCH/MULTI/EXEC (optimistic locking): if another client touches
        the parent hash between the read and ``EXEC``, the transaction aborts
        and the loop re-reads the state, where the loser now sees ``used=1``.
        """
        k_old = self._k(token_id)
        watched = [k_old]
        if successor is not None:
            watched.append(self._kt(successor.token))

        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(*watched)

                    h = {_s(k): _s(v) for k, v in p.hgetall(k_old).items()}
                    if not h or h.get("used") == "1" or h.get("revoked") == "1":
                        p.unwatch()
                        return False
                    if successor is not None and p.exists(self._kt(successor.token)):
                        p.unwatch()
                        raise TokenCollisionError(token_id=successor.id)

                    p.multi()
                    p.hset(k_old, mapping={"used": "1", "used_at": now.isoformat()})
                    if successor is not None:
                        self._queue_insert(p, successor)
                    p.execute()
                    return True
            except redis.WatchError:
                continue

    def mark_revoked(self, token: str, *, now: datetime, reason: str) -> bool:
        token_id = self.r.get(self._kt(token))
        if not token_id:
            return False
        return self._revoke_ids([_s(token_id)], now=now, reason=reason) > 0

    def revoke_all_for_user(self, user_id: str, *, now: datetime, reason: str) -> int:
        return self._revoke_ids(now=now, reason=reason, index_keys=[self._ku(user_id)])

    def revoke_family(
        self,
        *,
        user_id: str,
        parent_id: str | None,
        token_id: str,
        now: datetime,
        reason: str,
    ) -> int:
        index_keys = [self._ku(user_id), self._kp(token_id)]
        if parent_id is not None:
            index_keys.append(self._kp(parent_id))
        return self._revoke_ids(now=now, reason=reason, index_keys=index_keys)

    def purge(self, *, now: datetime) -> int:
        removed = 0
        stale: list[str] = []
        for token_id in sorted(self._members(self._KALL)):
            view = self.get(token_id)
            if view is None:
                # Underlying hash missing -> drop from the global index
                stale.append(token_id)
                continue
            if not (view.expires_at < now or view.is_revoked):
                continue
            with self.r.pipeline(transaction=True) as p:
                p.delete(self._k(token_id))
                p.delete(self._kt(view.token))
                p.srem(self._ku(view.user_id), token_id)
                if view.parent_token:
                    p.srem(self._kp(view.parent_token), token_id)
                p.srem(self._KALL, token_id)
                p.execute()
            removed += 1
        if stale:
            self.r.srem(self._KALL, *stale)
        log.debug("refresh_tokens.purged", extra={"count": removed})
        return removed

    def statistics(self, *, now: datetime, since: datetime) -> TokenStatistics:
        views = (self.get(i) for i in self._members(self._KALL))
        return TokenStatistics.tally((v for v in views if v), now=now, since=since)
