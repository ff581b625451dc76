# tokenguard/infra/sqlalchemy/refresh_token_store.py
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokenguard.models.refresh_token import RefreshToken
from tokenguard.services._shared.errors import TokenCollisionError, violates
from tokenguard.services._shared.ports import (
    RefreshTokenStore,
    RefreshTokenView,
    TokenStatistics,
)
from tokenguard.uow import SQLAlchemyUnitOfWork

log = logging.getLogger(__name__)

TOKEN_UNIQUE_CONSTRAINT = "uq_refresh_tokens_token"


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; rows are always written in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_view(row: RefreshToken) -> RefreshTokenView:
    return RefreshTokenView(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_utc(row.expires_at),  # type: ignore[arg-type]
        created_at=_utc(row.created_at),  # type: ignore[arg-type]
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_used=bool(row.is_used),
        is_revoked=bool(row.is_revoked),
        parent_token=row.parent_token,
        rotation_count=row.rotation_count,
        used_at=_utc(row.used_at),
        revoked_at=_utc(row.revoked_at),
        revoked_reason=row.revoked_reason,
        kind=row.kind,
    )


def _to_row(record: RefreshTokenView) -> RefreshToken:
    return RefreshToken(
        id=record.id,
        user_id=record.user_id,
        token=record.token,
        expires_at=record.expires_at,
        created_at=record.created_at,
        ip_address=record.ip_address,
        user_agent=record.user_agent,
        is_used=record.is_used,
        is_revoked=record.is_revoked,
        parent_token=record.parent_token,
        rotation_count=record.rotation_count,
        used_at=record.used_at,
        revoked_at=record.revoked_at,
        revoked_reason=record.revoked_reason,
        kind=record.kind,
    )


class SQLAlchemyRefreshTokenStore(RefreshTokenStore):
    """
    Relational refresh token store.

    Every write opens its own :class:`SQLAlchemyUnitOfWork`. Consumption is a
    conditional ``UPDATE ... WHERE is_used = false AND is_revoked = false``;
    the database row lock arbitrates concurrent rotations and the successor is
    inserted in the same transaction.

    :param session_factory: Returns the session to use; defaults to the
        Flask-scoped ``db.session`` (requires an app context).
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def _uow(self) -> SQLAlchemyUnitOfWork:
        session = self._session_factory() if self._session_factory else None
        return SQLAlchemyUnitOfWork(session=session)

    # -------------------------- reads ----------------------------

    def get(self, token_id: str) -> RefreshTokenView | None:
        with self._uow() as uow:
            row = uow.refresh_tokens.get(token_id)
            return _to_view(row) if row else None

    def find_by_token(self, token: str) -> RefreshTokenView | None:
        with self._uow() as uow:
            row = uow.refresh_tokens.get_by_token(token)
            return _to_view(row) if row else None

    def list_for_user(self, user_id: str) -> list[RefreshTokenView]:
        with self._uow() as uow:
            return [_to_view(r) for r in uow.refresh_tokens.list_by_user(user_id)]

    def list_children(self, parent_id: str) -> list[RefreshTokenView]:
        with self._uow() as uow:
            return [_to_view(r) for r in uow.refresh_tokens.list_by_parent(parent_id)]

    # -------------------------- writes ---------------------------

    def add(self, record: RefreshTokenView) -> None:
        try:
            with self._uow() as uow:
                uow.refresh_tokens.add(_to_row(record))
        except IntegrityError as exc:
            if violates(exc, TOKEN_UNIQUE_CONSTRAINT) or violates(exc, "refresh_tokens.token"):
                raise TokenCollisionError(token_id=record.id) from exc
            raise

    def consume(
        self,
        token_id: str,
        *,
        now: datetime,
        successor: RefreshTokenView | None = None,
    ) -> bool:
        try:
            with self._uow() as uow:
                if not uow.refresh_tokens.mark_used(token_id, now=now):
                    return False
                if successor is not None:
                    uow.refresh_tokens.add(_to_row(successor))
                return True
        except IntegrityError as exc:
            # The UoW rolled back, so the parent is still unused.
            if successor is not None and (
                violates(exc, TOKEN_UNIQUE_CONSTRAINT) or violates(exc, "refresh_tokens.token")
            ):
                raise TokenCollisionError(token_id=successor.id) from exc
            raise

    def mark_revoked(self, token: str, *, now: datetime, reason: str) -> bool:
        with self._uow() as uow:
            return (
                uow.refresh_tokens.revoke_where(RefreshToken.token == token, now=now, reason=reason)
                > 0
            )

    def revoke_all_for_user(self, user_id: str, *, now: datetime, reason: str) -> int:
        with self._uow() as uow:
            return uow.refresh_tokens.revoke_where(
                RefreshToken.user_id == user_id, now=now, reason=reason
            )

    def revoke_family(
        self,
        *,
        user_id: str,
        parent_id: str | None,
        token_id: str,
        now: datetime,
        reason: str,
    ) -> int:
        criteria = [RefreshToken.user_id == user_id, RefreshToken.parent_token == token_id]
        if parent_id is not None:
            criteria.append(RefreshToken.parent_token == parent_id)
        with self._uow() as uow:
            return uow.refresh_tokens.revoke_where(*criteria, now=now, reason=reason)

    def purge(self, *, now: datetime) -> int:
        with self._uow() as uow:
            count = uow.refresh_tokens.purge(now=now)
        log.debug("refresh_tokens.purged", extra={"count": count})
        return count

    def statistics(self, *, now: datetime, since: datetime) -> TokenStatistics:
        with self._uow() as uow:
            counts = uow.refresh_tokens.statistics(now=now, since=since)
        return TokenStatistics(**counts)
