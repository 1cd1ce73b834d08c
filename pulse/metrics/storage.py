"""
Pulse - Time-Series Storage.

============================================================
RESPONSIBILITY
============================================================
Rolling storage of metric snapshots, per-metric points and
per-module error summaries over two interchangeable backends:

- RedisBackend: durable, retention enforced server-side with
  sorted-set trims and key TTLs
- InMemoryBackend: bounded ring buffers, count-based eviction

============================================================
DEGRADATION CONTRACT
============================================================
- Writes go to the durable backend while it is preferred and
  are always mirrored to memory
- Reads use the preferred backend only
- Any durable exception flips the state to DEGRADED for the
  rest of the process; a failed read is retried once on memory
- Only a failure of both backends reaches the caller
  (StorageError)
- `reenable_durable()` is the only way back to PREFERRED

============================================================
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from core.clock import ClockProtocol, SystemClock, to_iso8601, to_timestamp_ms
from pulse.config import DEFAULT_RETENTION_SECONDS
from pulse.exceptions import StorageError
from pulse.models import ErrorSummary, MetricsSnapshot, TimeSeriesPoint


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# BACKEND STATE
# ============================================================

class BackendState(str, Enum):
    """Which backend serves reads."""

    PREFERRED = "preferred"
    DEGRADED = "degraded"


class BackendEvent(str, Enum):
    DURABLE_FAILED = "durable_failed"
    REENABLED = "reenabled"


def next_backend_state(state: BackendState, event: BackendEvent) -> BackendState:
    """Pure transition function for the durable-preferred flag."""
    if event == BackendEvent.DURABLE_FAILED:
        return BackendState.DEGRADED
    if event == BackendEvent.REENABLED:
        return BackendState.PREFERRED
    return state


# ============================================================
# BACKEND INTERFACE
# ============================================================

class TimeSeriesBackend(ABC):
    """Storage operations shared by both backends."""

    name: str = "backend"

    @abstractmethod
    async def store_snapshot(self, snapshot: MetricsSnapshot) -> None:
        pass

    @abstractmethod
    async def get_snapshots(
        self, period: str, start: datetime, end: datetime
    ) -> List[MetricsSnapshot]:
        pass

    @abstractmethod
    async def store_point(self, metric: str, value: float, timestamp: datetime) -> None:
        pass

    @abstractmethod
    async def get_points(
        self, metric: str, start: datetime, end: datetime
    ) -> List[TimeSeriesPoint]:
        pass

    @abstractmethod
    async def record_error(
        self, module: str, error_type: str, message: str, occurred_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def get_errors(self, module: str) -> List[ErrorSummary]:
        pass


# ============================================================
# IN-MEMORY BACKEND
# ============================================================

class InMemoryBackend(TimeSeriesBackend):
    """Bounded in-process backend. Evicts oldest entries by count."""

    name = "memory"

    def __init__(self, max_snapshots: int = 1000, max_points: int = 3600) -> None:
        self._max_snapshots = max_snapshots
        self._max_points = max_points
        self._snapshots: Dict[str, Deque[MetricsSnapshot]] = {}
        self._points: Dict[str, Deque[TimeSeriesPoint]] = {}
        self._errors: Dict[str, Dict[str, ErrorSummary]] = {}
        self._lock = threading.Lock()

    async def store_snapshot(self, snapshot: MetricsSnapshot) -> None:
        with self._lock:
            series = self._snapshots.get(snapshot.period)
            if series is None:
                series = deque(maxlen=self._max_snapshots)
                self._snapshots[snapshot.period] = series
            series.append(snapshot)

    async def get_snapshots(
        self, period: str, start: datetime, end: datetime
    ) -> List[MetricsSnapshot]:
        with self._lock:
            series = list(self._snapshots.get(period, ()))
        return [s for s in series if start <= s.timestamp <= end]

    async def store_point(self, metric: str, value: float, timestamp: datetime) -> None:
        with self._lock:
            series = self._points.get(metric)
            if series is None:
                series = deque(maxlen=self._max_points)
                self._points[metric] = series
            series.append(TimeSeriesPoint(timestamp=timestamp, value=value))

    async def get_points(
        self, metric: str, start: datetime, end: datetime
    ) -> List[TimeSeriesPoint]:
        with self._lock:
            series = list(self._points.get(metric, ()))
        return [p for p in series if start <= p.timestamp <= end]

    async def record_error(
        self, module: str, error_type: str, message: str, occurred_at: datetime
    ) -> None:
        with self._lock:
            module_errors = self._errors.setdefault(module, {})
            current = module_errors.get(error_type)
            module_errors[error_type] = ErrorSummary(
                error_type=error_type,
                count=(current.count if current else 0) + 1,
                last_occurred=occurred_at,
                last_message=message,
            )

    async def get_errors(self, module: str) -> List[ErrorSummary]:
        with self._lock:
            return list(self._errors.get(module, {}).values())

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
            self._points.clear()
            self._errors.clear()


# ============================================================
# REDIS BACKEND
# ============================================================

def _decode(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


class RedisBackend(TimeSeriesBackend):
    """
    Durable backend on Redis.

    Keys:
        {prefix}:snapshot:{period}        sorted set, score = ms
        {prefix}:ts:{metric}              sorted set, score = ms
        {prefix}:errors:{module}          hash type -> summary JSON
        {prefix}:error_count:{module}:{type}  counter
    """

    name = "redis"

    def __init__(
        self,
        client: Any,
        prefix: str = "pulse:metrics",
        retention_seconds: Optional[Dict[str, int]] = None,
        point_retention_seconds: int = 3600,
        error_ttl_seconds: int = 86400,
    ) -> None:
        """
        Args:
            client: A `redis.asyncio.Redis` instance
        """
        self._redis = client
        self._prefix = prefix
        self._retention = retention_seconds or dict(DEFAULT_RETENTION_SECONDS)
        self._point_retention = point_retention_seconds
        self._error_ttl = error_ttl_seconds

    async def store_snapshot(self, snapshot: MetricsSnapshot) -> None:
        key = f"{self._prefix}:snapshot:{snapshot.period}"
        score = to_timestamp_ms(snapshot.timestamp)
        await self._redis.zadd(key, {json.dumps(snapshot.to_dict()): score})

        retention = self._retention.get(snapshot.period, 3600)
        await self._redis.zremrangebyscore(key, 0, score - retention * 1000)

    async def get_snapshots(
        self, period: str, start: datetime, end: datetime
    ) -> List[MetricsSnapshot]:
        key = f"{self._prefix}:snapshot:{period}"
        rows = await self._redis.zrangebyscore(
            key, to_timestamp_ms(start), to_timestamp_ms(end)
        )
        return [MetricsSnapshot.from_dict(_decode(r)) for r in rows]

    async def store_point(self, metric: str, value: float, timestamp: datetime) -> None:
        key = f"{self._prefix}:ts:{metric}"
        score = to_timestamp_ms(timestamp)
        member = json.dumps({"timestamp": to_iso8601(timestamp), "value": value})
        await self._redis.zadd(key, {member: score})
        await self._redis.zremrangebyscore(key, 0, score - self._point_retention * 1000)

    async def get_points(
        self, metric: str, start: datetime, end: datetime
    ) -> List[TimeSeriesPoint]:
        key = f"{self._prefix}:ts:{metric}"
        rows = await self._redis.zrangebyscore(
            key, to_timestamp_ms(start), to_timestamp_ms(end)
        )
        return [TimeSeriesPoint.from_dict(_decode(r)) for r in rows]

    async def record_error(
        self, module: str, error_type: str, message: str, occurred_at: datetime
    ) -> None:
        key = f"{self._prefix}:errors:{module}"
        count_key = f"{self._prefix}:error_count:{module}:{error_type}"

        count = await self._redis.incr(count_key)
        summary = ErrorSummary(
            error_type=error_type,
            count=int(count),
            last_occurred=occurred_at,
            last_message=message,
        )
        await self._redis.hset(key, error_type, json.dumps(summary.to_dict()))
        await self._redis.expire(key, self._error_ttl)
        await self._redis.expire(count_key, self._error_ttl)

    async def get_errors(self, module: str) -> List[ErrorSummary]:
        rows = await self._redis.hgetall(f"{self._prefix}:errors:{module}")
        return [ErrorSummary.from_dict(_decode(v)) for v in rows.values()]


# ============================================================
# STORAGE FACADE
# ============================================================

class TimeSeriesStorage:
    """
    Durable-preferred facade over two backends.

    Passing `durable=None` starts in DEGRADED state (memory only).
    """

    def __init__(
        self,
        memory: Optional[InMemoryBackend] = None,
        durable: Optional[TimeSeriesBackend] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._memory = memory or InMemoryBackend()
        self._durable = durable
        self._clock = clock or SystemClock()
        self._state = BackendState.PREFERRED if durable is not None else BackendState.DEGRADED
        self._state_lock = threading.Lock()

    # =========================================================
    # STATE
    # =========================================================

    @property
    def state(self) -> BackendState:
        with self._state_lock:
            return self._state

    @property
    def is_degraded(self) -> bool:
        return self.state == BackendState.DEGRADED

    @property
    def memory(self) -> InMemoryBackend:
        return self._memory

    def _apply(self, event: BackendEvent) -> BackendState:
        with self._state_lock:
            previous = self._state
            self._state = next_backend_state(previous, event)
            return previous

    def _mark_degraded(self, operation: str, error: Exception) -> None:
        previous = self._apply(BackendEvent.DURABLE_FAILED)
        if previous != BackendState.DEGRADED:
            logger.warning(
                f"Durable storage failed during {operation}, "
                f"switching to in-memory storage: {error}"
            )

    def reenable_durable(self) -> bool:
        """
        Return to the durable backend after external intervention.

        Returns:
            False when no durable backend is configured
        """
        if self._durable is None:
            return False
        previous = self._apply(BackendEvent.REENABLED)
        if previous != BackendState.PREFERRED:
            logger.info("Durable storage re-enabled")
        return True

    def _durable_preferred(self) -> bool:
        return self._durable is not None and self.state == BackendState.PREFERRED

    # =========================================================
    # DISPATCH
    # =========================================================

    async def _write(
        self,
        operation: str,
        call: Callable[[TimeSeriesBackend], Awaitable[None]],
    ) -> None:
        durable_ok = False
        if self._durable_preferred():
            try:
                await call(self._durable)
                durable_ok = True
            except Exception as e:
                self._mark_degraded(operation, e)

        try:
            await call(self._memory)
        except Exception as e:
            if not durable_ok:
                raise StorageError(operation, e) from e
            logger.error(f"In-memory mirror failed during {operation}: {e}")

    async def _read(
        self,
        operation: str,
        call: Callable[[TimeSeriesBackend], Awaitable[T]],
    ) -> T:
        if self._durable_preferred():
            try:
                return await call(self._durable)
            except Exception as e:
                self._mark_degraded(operation, e)

        try:
            return await call(self._memory)
        except Exception as e:
            raise StorageError(operation, e) from e

    # =========================================================
    # OPERATIONS
    # =========================================================

    async def store_snapshot(self, snapshot: MetricsSnapshot) -> None:
        await self._write("store_snapshot", lambda b: b.store_snapshot(snapshot))

    async def get_snapshots(
        self, period: str, start: datetime, end: datetime
    ) -> List[MetricsSnapshot]:
        return await self._read("get_snapshots", lambda b: b.get_snapshots(period, start, end))

    async def store_point(
        self, metric: str, value: float, timestamp: Optional[datetime] = None
    ) -> None:
        timestamp = timestamp or self._clock.now()
        await self._write("store_point", lambda b: b.store_point(metric, value, timestamp))

    async def get_points(
        self, metric: str, start: datetime, end: datetime
    ) -> List[TimeSeriesPoint]:
        return await self._read("get_points", lambda b: b.get_points(metric, start, end))

    async def record_error(self, module: str, error_type: str, message: str) -> None:
        occurred_at = self._clock.now()
        await self._write(
            "record_error",
            lambda b: b.record_error(module, error_type, message, occurred_at),
        )

    async def get_errors(self, module: str) -> List[ErrorSummary]:
        return await self._read("get_errors", lambda b: b.get_errors(module))
