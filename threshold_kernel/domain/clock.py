"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock so that request deadlines, expiry checks
    and audit timestamps never call ``datetime.now()`` directly.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Failure modes:
    - DeterministicClock rejects naive datetimes; every timestamp the
      kernel compares against ``expires_at`` must be timezone-aware.

Audit relevance:
    Expiry is a time-driven transition.  With an injected clock the lazy
    expiry check inside approve/reject and the periodic sweep are evaluated
    against the same notion of "now", and tests can place a request exactly
    on, before or after its deadline.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time (UTC)."""

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
        """
        Initialize with optional fixed time.

        Args:
            fixed_time: Starting time.  Defaults to 2024-01-01 12:00 UTC.
        """
        start = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._current = self._require_aware(start)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current = self._require_aware(time)

    def advance(self, seconds: float = 0, *, hours: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, hours=hours)
        return self._current

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        return self.advance(1)

    @staticmethod
    def _require_aware(value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        return value.astimezone(timezone.utc)
