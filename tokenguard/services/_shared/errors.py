"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and should never import or depend
on Flask, HTTP, or SQLAlchemy directly. They serve as stable contracts between
stores, token services, and the callers of the engine.

The translation to HTTP responses (RFC 7807) is handled by
``tokenguard/core/errors.py`` via ``BaseService.translate_exceptions()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError


def violates(exc: IntegrityError, constraint_name: str) -> bool:
    """
    Check whether an IntegrityError originates from a specific constraint.

    Supports PostgreSQL (constraint name lookup) and SQLite (column list in
    the message) through a case-insensitive substring match.

    Parameters
    ----------
    exc : IntegrityError
        The exception raised by SQLAlchemy during flush/commit.
    constraint_name : str
        The name of the database constraint to match (e.g., 'uq_refresh_tokens_token').

    Returns
    -------
    bool
        True if the IntegrityError matches the given constraint.
    """
    message = str(exc.orig).lower() if exc.orig else ""
    return constraint_name.lower() in message


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - The API layer or BaseService will later translate them to APIError.
    """

    pass


# --------------------------------------------------------------------------- #
# Refresh token failures
# --------------------------------------------------------------------------- #


class FailureReason(str, Enum):
    """Internal reason codes for a rejected refresh attempt (audit only)."""

    INVALID_TOKEN = "invalid_token"
    TOKEN_REVOKED = "token_revoked"
    REUSE_DETECTED = "reuse_detected"
    TOKEN_EXPIRED = "token_expired"
    METADATA_MISMATCH = "metadata_mismatch"


_MESSAGES: dict[FailureReason, str] = {
    FailureReason.INVALID_TOKEN: "Refresh token is unknown.",
    FailureReason.TOKEN_REVOKED: "Refresh token has been revoked.",
    FailureReason.REUSE_DETECTED: "Refresh token reuse detected. Please sign in again.",
    FailureReason.TOKEN_EXPIRED: "Refresh token has expired.",
    FailureReason.METADATA_MISMATCH: "Client binding mismatch. Please re-authenticate.",
}


class RefreshTokenError(ServiceError):
    """
    Raised when a presented refresh (or handoff) token is rejected.

    All reasons are terminal for the calling request. The reason is meant for
    audit logging; callers should show a uniform message to end users.

    :param reason: Why the token was rejected.
    :type reason: FailureReason
    """

    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        super().__init__(message or _MESSAGES[reason])
        self.reason = reason


# --------------------------------------------------------------------------- #
# Integrity / infrastructure errors
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class TokenCollisionError(ServiceError):
    """
    Raised when a freshly generated token value already exists in the store.

    With 256 bits of entropy this never happens in practice; when it does it
    points at a broken random source and must not be retried.

    :param token_id: Id of the record that failed to persist.
    :type token_id: str
    """

    token_id: str

    def __str__(self) -> str:  # pragma: no cover
        return f"Refresh token value collision while persisting record {self.token_id}"


class RotationTimeoutError(ServiceError):
    """Raised when a rotation deadline passes before the atomic commit step."""

    def __init__(self, message: str = "Refresh rotation deadline exceeded") -> None:
        super().__init__(message)
