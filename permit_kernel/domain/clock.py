"""
Clock -- injectable source of the current time.

Responsibility:
    Approval-log timestamps, request creation times, notice times and
    credential validity windows all come from a Clock passed in by the
    caller.  Domain and service code never read the wall clock directly.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only implementation that
    touches the real clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Returns timezone-aware UTC datetimes from ``now()``."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until the test moves it
    with ``advance()`` or ``set_time()``.  Starts at 2024-01-01 12:00 UTC.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when

    def advance(self, seconds: float | timedelta = 1) -> None:
        """Move forward by ``seconds`` (a number or a timedelta)."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step

    def tick(self) -> datetime:
        self.advance(1)
        return self._current
