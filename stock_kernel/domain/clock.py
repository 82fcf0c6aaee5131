"""
Clock -- injectable time source.

Movements, balances and orders are stamped with ``clock.now()`` rather than
``datetime.now()`` so movement history ordering can be pinned in tests.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Every ``now()`` returns the same instant until ``advance()`` moves it,
    so movements written by one operation share a timestamp and a later
    operation can be made strictly newer.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or _EPOCH

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now
