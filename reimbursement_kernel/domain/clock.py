"""
Injectable time source.

Submission timestamps, SLA evaluation, ledger timestamps and escalation
times all come from a :class:`Clock` handed to the service at construction.
Nothing in the kernel calls ``datetime.now()`` on its own, which is what
makes a fourteen-day breach reproducible in a test that runs in
milliseconds.

:class:`SystemClock` is the only implementation that reads the real time.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware instants."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    Time stands still until ``advance``, ``advance_days``, ``tick`` or
    ``set_time`` moves it; moves are safe to make while other threads read.
    """

    def __init__(self, start: datetime | None = None):
        self._lock = threading.Lock()
        self._current = _require_aware(start or DEFAULT_TEST_EPOCH)

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, time: datetime) -> None:
        """Jump to ``time``; backwards jumps are allowed."""
        with self._lock:
            self._current = _require_aware(time)

    def advance(self, seconds: float = 1) -> datetime:
        return self._shift(timedelta(seconds=seconds))

    def advance_days(self, days: float) -> datetime:
        return self._shift(timedelta(days=days))

    def tick(self) -> datetime:
        return self._shift(timedelta(seconds=1))

    def _shift(self, delta: timedelta) -> datetime:
        with self._lock:
            self._current += delta
            return self._current


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"Clock times must be timezone-aware, got {value!r}")
    return value
