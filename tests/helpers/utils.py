"""Tiny helpers shared across test modules."""

from __future__ import annotations

from contextlib import contextmanager

import pytest

from tokenguard.services._shared.errors import FailureReason, RefreshTokenError


@contextmanager
def not_raises(exception: type[BaseException]):
    """Context manager asserting that an exception is *not* raised."""
    try:
        yield
    except exception as exc:  # pragma: no cover
        raise AssertionError(f"Did raise {exception}: {exc}") from exc


@contextmanager
def rejected(reason: FailureReason):
    """Assert the block raises :class:`RefreshTokenError` with ``reason``."""
    with pytest.raises(RefreshTokenError) as excinfo:
        yield excinfo
    assert excinfo.value.reason is reason
