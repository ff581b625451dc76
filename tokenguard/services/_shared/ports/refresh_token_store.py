from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from tokenguard.services._shared.errors import TokenCollisionError

KIND_REFRESH = "refresh"
KIND_HANDOFF = "handoff"


@dataclass(frozen=True)
class RefreshTokenView:
    """
    Read-model for a persisted refresh token record.

    :ivar id: Opaque record identifier (never recycled).
    :ivar user_id: Owner user id.
    :ivar token: Opaque secret presented by clients (64 hex chars).
    :ivar expires_at: Absolute expiration (UTC).
    :ivar ip_address: Client IP captured at issuance, if known.
    :ivar user_agent: Client user-agent captured at issuance, if known.
    :ivar is_used: Whether the token has been exchanged for a successor.
    :ivar is_revoked: Whether the token has been revoked (terminal).
    :ivar parent_token: Id of the record this one superseded.
    :ivar rotation_count: Position in the rotation chain (0 for roots).
    :ivar created_at: Creation instant.
    :ivar used_at: Instant of consumption.
    :ivar revoked_at: Instant of revocation.
    :ivar revoked_reason: Short audit label for the revocation.
    :ivar kind: ``"refresh"`` or ``"handoff"``.
    """

    id: str
    user_id: str
    token: str
    expires_at: datetime
    created_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    is_used: bool = False
    is_revoked: bool = False
    parent_token: str | None = None
    rotation_count: int = 0
    used_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    kind: str = KIND_REFRESH

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not (self.is_revoked or self.is_used or self.is_expired(now))


@dataclass(frozen=True, slots=True)
class TokenStatistics:
    """
    System-wide counts over unpurged refresh records (handoffs excluded).

    :ivar total: Every refresh record still stored.
    :ivar active: Unrevoked, unused and unexpired.
    :ivar revoked: Revoked, whatever the reason.
    :ivar expired: ``expires_at <= now``.
    :ivar created_today: Created at or after ``since``.
    :ivar revoked_today: Revoked at or after ``since``.
    """

    total: int = 0
    active: int = 0
    revoked: int = 0
    expired: int = 0
    created_today: int = 0
    revoked_today: int = 0

    @classmethod
    def tally(
        cls, records: Iterable[RefreshTokenView], *, now: datetime, since: datetime
    ) -> TokenStatistics:
        """Count ``records`` in Python; used by stores without an aggregate query."""
        refresh = [r for r in records if r.kind == KIND_REFRESH]
        return cls(
            total=len(refresh),
            active=sum(1 for r in refresh if r.is_active(now)),
            revoked=sum(1 for r in refresh if r.is_revoked),
            expired=sum(1 for r in refresh if r.is_expired(now)),
            created_today=sum(1 for r in refresh if r.created_at >= since),
            revoked_today=sum(
                1
                for r in refresh
                if r.is_revoked and r.revoked_at is not None and r.revoked_at >= since
            ),
        )


class RefreshTokenStore(Protocol):
    """
    Stateful store for refresh token records.

    Records are only ever created, flagged (used/revoked) or purged.
    :meth:`consume` MUST be atomic: at most one caller may observe the
    unused→used transition for a given record id.
    """

    def add(self, record: RefreshTokenView) -> None:
        """
        Persist a brand-new record.

        :raises TokenCollisionError: If ``record.token`` already exists.
        """

    def get(self, token_id: str) -> RefreshTokenView | None:
        """Fetch a record by id."""

    def find_by_token(self, token: str) -> RefreshTokenView | None:
        """Fetch a record by its opaque token value."""

    def list_for_user(self, user_id: str) -> list[RefreshTokenView]:
        """List every unpurged record owned by ``user_id``."""

    def list_children(self, parent_id: str) -> list[RefreshTokenView]:
        """List records whose ``parent_token`` is ``parent_id``."""

    def consume(
        self,
        token_id: str,
        *,
        now: datetime,
        successor: RefreshTokenView | None = None,
    ) -> bool:
        """
        Atomically mark ``token_id`` used and persist ``successor`` (if given).

        :returns: ``True`` if this call performed the transition, ``False`` if the
            record was missing, already used, or revoked (nothing is written).
        """

    def mark_revoked(self, token: str, *, now: datetime, reason: str) -> bool:
        """Revoke the record holding ``token``. :returns: True if it changed."""

    def revoke_all_for_user(self, user_id: str, *, now: datetime, reason: str) -> int:
        """Revoke every non-revoked record of the user. :returns: Records affected."""

    def revoke_family(
        self,
        *,
        user_id: str,
        parent_id: str | None,
        token_id: str,
        now: datetime,
        reason: str,
    ) -> int:
        """
        Revoke records matching ``user_id`` OR ``parent_token == parent_id``
        OR ``parent_token == token_id``.

        :returns: Records affected.
        """

    def purge(self, *, now: datetime) -> int:
        """Delete records with ``expires_at < now`` or ``is_revoked``. :returns: Count."""

    def statistics(self, *, now: datetime, since: datetime) -> TokenStatistics:
        """Aggregate counts over every stored refresh record."""


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh token store with atomic consume behavior.

    .. note::
       Uses a threading lock to provide per-process atomicity.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, RefreshTokenView] = {}
        self._by_token: dict[str, str] = {}
        self._lock = threading.Lock()

    # ------------------------- helpers -------------------------

    def _revoke(self, token_id: str, *, now: datetime, reason: str) -> bool:
        rec = self._by_id.get(token_id)
        if rec is None or rec.is_revoked:
            return False
        self._by_id[token_id] = replace(rec, is_revoked=True, revoked_at=now, revoked_reason=reason)
        return True

    def _insert(self, record: RefreshTokenView) -> None:
        if record.token in self._by_token:
            raise TokenCollisionError(token_id=record.id)
        self._by_id[record.id] = record
        self._by_token[record.token] = record.id

    # -------------------------- API ----------------------------

    def add(self, record: RefreshTokenView) -> None:
        with self._lock:
            self._insert(record)

    def get(self, token_id: str) -> RefreshTokenView | None:
        with self._lock:
            return self._by_id.get(token_id)

    def find_by_token(self, token: str) -> RefreshTokenView | None:
        with self._lock:
            token_id = self._by_token.get(token)
            return self._by_id.get(token_id) if token_id else None

    def list_for_user(self, user_id: str) -> list[RefreshTokenView]:
        with self._lock:
            rows = [r for r in self._by_id.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: (r.created_at, r.rotation_count))

    def list_children(self, parent_id: str) -> list[RefreshTokenView]:
        with self._lock:
            return [r for r in self._by_id.values() if r.parent_token == parent_id]

    def consume(
        self,
        token_id: str,
        *,
        now: datetime,
        successor: RefreshTokenView | None = None,
    ) -> bool:
        with self._lock:
            rec = self._by_id.get(token_id)
            if rec is None or rec.is_used or rec.is_revoked:
                return False
            if successor is not None and successor.token in self._by_token:
                raise TokenCollisionError(token_id=successor.id)
            if successor is not None:
                self._insert(successor)
            self._by_id[token_id] = replace(rec, is_used=True, used_at=now)
            return True

    def mark_revoked(self, token: str, *, now: datetime, reason: str) -> bool:
        with self._lock:
            token_id = self._by_token.get(token)
            if token_id is None:
                return False
            return self._revoke(token_id, now=now, reason=reason)

    def revoke_all_for_user(self, user_id: str, *, now: datetime, reason: str) -> int:
        with self._lock:
            ids = [r.id for r in self._by_id.values() if r.user_id == user_id]
            return sum(self._revoke(i, now=now, reason=reason) for i in ids)

    def revoke_family(
        self,
        *,
        user_id: str,
        parent_id: str | None,
        token_id: str,
        now: datetime,
        reason: str,
    ) -> int:
        with self._lock:
            ids = [
                r.id
                for r in self._by_id.values()
                if r.user_id == user_id
                or (parent_id is not None and r.parent_token == parent_id)
                or r.parent_token == token_id
            ]
            return sum(self._revoke(i, now=now, reason=reason) for i in ids)

    def purge(self, *, now: datetime) -> int:
        with self._lock:
            doomed = [r for r in self._by_id.values() if r.expires_at < now or r.is_revoked]
            for rec in doomed:
                del self._by_id[rec.id]
                self._by_token.pop(rec.token, None)
            return len(doomed)

    def statistics(self, *, now: datetime, since: datetime) -> TokenStatistics:
        with self._lock:
            records = list(self._by_id.values())
        return TokenStatistics.tally(records, now=now, since=since)
