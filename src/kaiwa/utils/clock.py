"""
Injectable time source.

Services take an optional ``clock`` argument so tests can pin "now".
All times are timezone-aware UTC.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol

from kaiwa.utils.rounding import round_half_up


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start else datetime(2025, 1, 1, 9, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self._now = self._now + timedelta(minutes=minutes, seconds=seconds)
        return self._now


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, rounded to nearest."""
    return round_half_up((ensure_utc(end) - ensure_utc(start)).total_seconds() / 60)


system_clock = SystemClock()
