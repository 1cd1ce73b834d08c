"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
One injectable time source for every Pulse component.

- `now()`: aware UTC wall-clock time (snapshots, points,
  alert events, cooldown expiry)
- `timestamp()`: Unix seconds (uptime)
- `monotonic()`: duration measurement (probe and timer latency)

Naive datetimes entering through this module are taken as UTC.

============================================================
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class ClockProtocol(ABC):
    """Time source interface."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    @abstractmethod
    def monotonic(self) -> float:
        pass

    def timestamp(self) -> float:
        return self.now().timestamp()


class SystemClock(ClockProtocol):
    """Real time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.perf_counter()


class MockClock(ClockProtocol):
    """
    Manually advanced clock for tests.

    `advance()` moves wall-clock and monotonic readings together,
    so a probe timed across an advance reports the advanced span.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time or datetime.now(timezone.utc))
        self._elapsed = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def monotonic(self) -> float:
        with self._lock:
            return self._elapsed

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """Move forward by `seconds` plus any timedelta kwargs (minutes=, hours=...)."""
        delta = timedelta(seconds=seconds, **kwargs)
        with self._lock:
            self._time += delta
            self._elapsed += delta.total_seconds()


# ============================================================
# CONVERSIONS
# ============================================================

def to_iso8601(dt: datetime) -> str:
    return ensure_utc(dt).isoformat()


def from_iso8601(value: str) -> datetime:
    """Parse ISO 8601, accepting a trailing `Z`."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def to_timestamp_ms(dt: datetime) -> int:
    """Sorted-set score for time-indexed Redis keys."""
    return int(ensure_utc(dt).timestamp() * 1000)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "to_iso8601",
    "from_iso8601",
    "to_timestamp_ms",
]
