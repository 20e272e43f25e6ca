"""
Clock -- injectable source of "now".

Responsibility:
    Request deadlines, escalation thresholds, step due dates and reminder
    offsets are all measured against a Clock handed to the service, never
    against the wall clock read in place.

Architecture position:
    Kernel > Domain. SystemClock is the only implementation that reads real
    time; engines receive ``now`` as an argument and never see a Clock.

Invariants enforced:
    Every timestamp is timezone-aware UTC.

Failure modes:
    - DeterministicClock raises ValueError when given a naive datetime.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._check_aware(fixed_time)
        self._fixed_time = fixed_time
        self._offset = timedelta(0)

    @staticmethod
    def _check_aware(value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")

    def now(self) -> datetime:
        return (self._fixed_time + self._offset).astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._check_aware(time)
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(
        self, seconds: float | None = None, *, hours: float = 0, days: float = 0
    ) -> None:
        """Advance the clock by the given amount (one second when called bare)."""
        if seconds is None:
            seconds = 0 if (hours or days) else 1
        self._offset += timedelta(seconds=seconds, hours=hours, days=days)
