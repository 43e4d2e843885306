"""
Clock -- injectable time source for execution timestamps.

Every create / start / end time recorded on a job or step execution is
taken from a Clock handed to the JobRepository, never from
``datetime.now()``.  Tests pin time with ``DeterministicClock``; an
optional per-read ``step`` gives successive timestamps a fixed spacing so
durations are predictable.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only class here that touches
    the real wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock under test control.

    ``now()`` returns ``start`` plus everything advanced so far.  With
    ``step`` set, each ``now()`` call moves the clock forward by ``step``
    after answering, so two consecutive readings are exactly ``step``
    apart.
    """

    def __init__(
        self,
        start: datetime | None = None,
        step: timedelta | None = None,
    ):
        self._current = start or EPOCH
        self._step = step or timedelta(0)

    def now(self) -> datetime:
        current = self._current
        self._current += self._step
        return current

    def peek(self) -> datetime:
        """Current reading without applying ``step``."""
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when

    def advance(self, amount: timedelta | int = 1) -> datetime:
        """Move forward by ``amount`` (seconds when an int); return the new time."""
        if not isinstance(amount, timedelta):
            amount = timedelta(seconds=amount)
        self._current += amount
        return self._current
