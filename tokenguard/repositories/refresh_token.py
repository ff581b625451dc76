"""Persistence helpers for :class:`~tokenguard.models.refresh_token.RefreshToken`."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    ColumnElement,
    and_,
    case,
    delete,
    false,
    func,
    or_,
    select,
    true,
    update,
)

from tokenguard.models.refresh_token import RefreshToken
from tokenguard.services._shared.ports import KIND_REFRESH

from .base import BaseRepository


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    """Repository for refresh token rows.

    Every status transition is a single conditional ``UPDATE`` whose
    ``rowcount`` tells the caller whether it won the transition.
    """

    model = RefreshToken

    def get_by_token(self, token: str) -> RefreshToken | None:
        """Return the row holding the opaque ``token`` value, if any."""
        stmt = select(RefreshToken).where(RefreshToken.token == token)
        return self.session.execute(stmt).scalars().first()

    def list_by_user(self, user_id: str) -> list[RefreshToken]:
        """Return every row of ``user_id`` ordered by creation then chain position."""
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at.asc(), RefreshToken.rotation_count.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def list_by_parent(self, parent_id: str) -> list[RefreshToken]:
        """Return the direct successors of ``parent_id``."""
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.parent_token == parent_id)
            .order_by(RefreshToken.created_at.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def mark_used(self, token_id: str, *, now: datetime) -> bool:
        """
        Flip ``is_used`` for ``token_id`` only if it is still live.

        :param token_id: Record identifier.
        :param now: Consumption instant stored in ``used_at``.
        :returns: ``True`` when exactly this call performed the transition.
        :rtype: bool
        """
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == token_id,
                RefreshToken.is_used == false(),
                RefreshToken.is_revoked == false(),
            )
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        result: Any = self.session.execute(stmt)
        return result.rowcount == 1

    def revoke_where(
        self, *criteria: ColumnElement[bool], now: datetime, reason: str
    ) -> int:
        """
        Revoke every non-revoked row matching ANY of ``criteria``.

        :returns: Number of rows that changed.
        :rtype: int
        """
        if not criteria:
            return 0
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.is_revoked == false(), or_(*criteria))
            .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result: Any = self.session.execute(stmt)
        return int(result.rowcount or 0)

    def purge(self, *, now: datetime) -> int:
        """Delete expired or revoked rows. :returns: Rows deleted."""
        stmt = (
            delete(RefreshToken)
            .where(or_(RefreshToken.expires_at < now, RefreshToken.is_revoked == true()))
            .execution_options(synchronize_session=False)
        )
        result: Any = self.session.execute(stmt)
        return int(result.rowcount or 0)

    def statistics(self, *, now: datetime, since: datetime) -> dict[str, int]:
        """
        Count refresh rows by state in a single aggregate query.

        :returns: Mapping with ``total``, ``active``, ``revoked``, ``expired``,
            ``created_today`` and ``revoked_today``.
        """
        expired = RefreshToken.expires_at <= now
        revoked = RefreshToken.is_revoked == true()

        def count_if(*conditions: ColumnElement[bool]) -> Any:
            return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)

        stmt = select(
            func.count().label("total"),
            count_if(
                RefreshToken.is_revoked == false(),
                RefreshToken.is_used == false(),
                RefreshToken.expires_at > now,
            ).label("active"),
            count_if(revoked).label("revoked"),
            count_if(expired).label("expired"),
            count_if(RefreshToken.created_at >= since).label("created_today"),
            count_if(revoked, RefreshToken.revoked_at >= since).label("revoked_today"),
        ).where(RefreshToken.kind == KIND_REFRESH)
        row = self.session.execute(stmt).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}
