"""Time sources for the orchestration core.

Entities never read the wall clock directly; they ask the clock they were
given. ``SystemClock`` is used by the CLI, ``ManualClock`` by tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, milliseconds: float) -> datetime:
        """Move the clock forward and return the new time."""
        if milliseconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now = self._now + timedelta(milliseconds=milliseconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes loaded from older state files."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
