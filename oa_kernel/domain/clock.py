"""
Clock -- injectable time source.

Services never call ``datetime.now()`` themselves.  Every timestamp on an
instance, node record, todo, notification and audit event comes from the
Clock handed to the service, and request deadlines are measured with the
same Clock's ``monotonic()``.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds from an arbitrary origin; only differences are meaningful."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    ``now()`` and ``monotonic()`` both move by exactly the seconds passed
    to ``advance()``.
    """

    def __init__(self, start: datetime | None = None):
        self._start = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._elapsed = 0.0

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, seconds: float = 1) -> None:
        self._elapsed += seconds
