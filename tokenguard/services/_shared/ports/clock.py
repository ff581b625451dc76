from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Port returning the current instant as a timezone-aware UTC datetime."""

    def now(self) -> datetime: ...


class SystemClock(Clock):
    """Wall clock backed by :func:`datetime.now`."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Manually driven clock used in unit tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward by ``delta`` and return the new instant."""
        self._now = self._now + delta
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant
