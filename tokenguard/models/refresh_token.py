"""Refresh token model: one row per issued opaque refresh/handoff token."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from tokenguard.core.extensions import db

from .base import CreatedAtMixin, ReprMixin


class RefreshToken(ReprMixin, CreatedAtMixin, db.Model):
    """
    Persisted refresh token record.

    Rows form rotation chains through ``parent_token``; a row is never
    deleted while live, only flagged used or revoked and later purged.

    Fields
    ------
    id : str
        Opaque record identifier (uuid4 hex), never recycled.
    user_id : str
        Owner user id (opaque to this service).
    token : str
        Secret presented by clients. Globally unique.
    expires_at : datetime
        Absolute expiry, timezone-aware UTC.
    ip_address, user_agent : str | None
        Client fingerprint captured at issuance.
    is_used, is_revoked : bool
        Status flags; revoked is terminal.
    parent_token : str | None
        Id of the superseded record.
    rotation_count : int
        Position in the rotation chain (0 for roots).
    used_at, revoked_at : datetime | None
        Instants of the status transitions.
    revoked_reason : str | None
        Short audit label (``logout``, ``reuse_detected``...).
    kind : str
        ``refresh`` or ``handoff``.
    """

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_used: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    is_revoked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    parent_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rotation_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    kind: Mapped[str] = mapped_column(
        String(16), nullable=False, default="refresh", server_default="refresh"
    )

    __table_args__ = (
        UniqueConstraint("token", name="uq_refresh_tokens_token"),
        Index("ix_refresh_tokens_user_id", "user_id"),
        Index("ix_refresh_tokens_parent_token", "parent_token"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )
