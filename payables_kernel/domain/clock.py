"""
Injectable time sources for the payables ledger.

Responsibility:
    Supplies wall-clock timestamps for balance history, month entries and
    rollover markers, a monotonic reading for rate-cache expiry, and the
    calendar month key a payment lands in when the caller names none.

Architecture position:
    Kernel > Domain. Only ``SystemClock`` touches the host clock; every
    other component receives a ``Clock`` through its constructor.

Invariants:
    - ``now()`` is always timezone-aware UTC.
    - ``month_key()`` is the ``YYYY-MM`` of ``now()``.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_TEST_INSTANT = datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of "now" for ledger code."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def monotonic(self) -> float:
        """Seconds for TTL arithmetic. Defaults to the wall-clock epoch."""
        return self.now().timestamp()

    def month_key(self) -> str:
        """Current budget month as ``YYYY-MM``."""
        current = self.now()
        return f"{current.year:04d}-{current.month:02d}"


class SystemClock(Clock):
    """Host time. Not used by tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class DeterministicClock(Clock):
    """
    Hand-driven clock for tests and replays.

    The reading only moves when ``advance``, ``tick`` or ``set_time`` is
    called, so TTL expiry and month selection can be stepped precisely.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._anchor = fixed_time or _DEFAULT_TEST_INSTANT
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return self._anchor + self._offset

    def set_time(self, time: datetime) -> None:
        self._anchor = time
        self._offset = timedelta(0)

    def advance(self, seconds: int = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self.now()
