"""
Injectable time source.

Services never call ``datetime.now()``; they take a Clock.  Audit
``occurred_at``, ``updated_at`` on compare-and-set writes and
``LedgerSnapshot.taken_at`` all come from the clock a service was built
with, so tests pin them with DeterministicClock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):
    """UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until ``advance()`` moves it.
    Audit trails are ordered by ``occurred_at``, so tests that check event
    order advance the clock between the operations.
    """

    def __init__(self, start: datetime = DEFAULT_TEST_EPOCH):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
