"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for sample timestamps and alert lifecycle.

- Samples are stamped in epoch milliseconds
- Alert records carry UTC datetimes
- Tests swap in a MockClock for deterministic timestamps

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the monitor clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp in seconds."""
        pass

    def timestamp_ms(self) -> float:
        """Get current Unix timestamp in milliseconds."""
        return self.timestamp() * 1000.0


# ============================================================
# SYSTEM CLOCK
# ============================================================

class SystemClock(ClockProtocol):
    """Wall clock, always UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


# ============================================================
# MOCK CLOCK
# ============================================================

class MockClock(ClockProtocol):
    """
    Manually driven clock for tests.

    Time only moves through set_time() and advance().
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = _as_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            self._time = _as_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Move time forward.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (minutes, hours, ...)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# CLOCK FACTORY
# ============================================================

class ClockFactory:
    """Holds the process-wide clock instance."""

    _instance: Optional[ClockProtocol] = None
    _lock = threading.Lock()

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        with cls._lock:
            if cls._instance is None:
                cls._instance = SystemClock()
            return cls._instance

    @classmethod
    def set_clock(cls, clock: ClockProtocol) -> None:
        with cls._lock:
            cls._instance = clock

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = SystemClock()

    @classmethod
    @contextmanager
    def use_mock(
        cls,
        initial_time: Optional[datetime] = None,
    ) -> Generator[MockClock, None, None]:
        """Install a MockClock for the duration of the block."""
        original = cls._instance
        mock = MockClock(initial_time)
        cls.set_clock(mock)
        try:
            yield mock
        finally:
            with cls._lock:
                cls._instance = original


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso8601(dt: datetime) -> str:
    """Convert datetime to ISO 8601 string."""
    return _as_utc(dt).isoformat()


def from_iso8601(iso_string: str) -> datetime:
    """Parse ISO 8601 string to datetime."""
    return _as_utc(datetime.fromisoformat(iso_string))


def now_utc() -> datetime:
    """Current UTC time from the global clock."""
    return ClockFactory.get_clock().now()


def timestamp_ms_now() -> float:
    """Current epoch milliseconds from the global clock."""
    return ClockFactory.get_clock().timestamp_ms()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "to_iso8601",
    "from_iso8601",
    "now_utc",
    "timestamp_ms_now",
]
