"""
Tests for Time-Series Storage.

============================================================
PURPOSE
============================================================
Verify the durable-preferred facade and both backends.

TEST PRINCIPLES:
- A durable failure never reaches the caller while memory works
- Degradation is sticky until explicitly re-enabled
- Memory is always mirrored, so degraded reads see recent data
- Redis keys and scores follow the documented layout

============================================================
"""

import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from core.clock import MockClock, to_timestamp_ms
from pulse.exceptions import StorageError
from pulse.metrics.storage import (
    BackendEvent,
    BackendState,
    InMemoryBackend,
    RedisBackend,
    TimeSeriesStorage,
    next_backend_state,
)
from pulse.models import HealthStatus, MetricsSnapshot, ModuleHealth


T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(T0)


def make_snapshot(timestamp: datetime, period: str = "1m") -> MetricsSnapshot:
    return MetricsSnapshot(
        timestamp=timestamp,
        period=period,
        modules={
            "infrastructure": ModuleHealth(
                name="infrastructure",
                status=HealthStatus.HEALTHY,
                metrics={},
                errors=[],
                last_updated=timestamp,
            )
        },
    )


def failing_backend() -> MagicMock:
    backend = MagicMock()
    for method in (
        "store_snapshot", "get_snapshots", "store_point",
        "get_points", "record_error", "get_errors",
    ):
        setattr(backend, method, AsyncMock(side_effect=ConnectionError("redis down")))
    return backend


# ============================================================
# STATE MACHINE
# ============================================================

class TestBackendState:
    """Tests for the two-state transition function."""

    def test_failure_degrades(self):
        assert next_backend_state(BackendState.PREFERRED, BackendEvent.DURABLE_FAILED) == BackendState.DEGRADED

    def test_failure_while_degraded_stays_degraded(self):
        assert next_backend_state(BackendState.DEGRADED, BackendEvent.DURABLE_FAILED) == BackendState.DEGRADED

    def test_reenable_restores(self):
        assert next_backend_state(BackendState.DEGRADED, BackendEvent.REENABLED) == BackendState.PREFERRED


# ============================================================
# IN-MEMORY BACKEND
# ============================================================

class TestInMemoryBackend:
    """Tests for the bounded in-process backend."""

    @pytest.mark.asyncio
    async def test_snapshot_range_is_inclusive(self):
        backend = InMemoryBackend()
        for minutes in range(3):
            await backend.store_snapshot(make_snapshot(T0 + timedelta(minutes=minutes)))

        found = await backend.get_snapshots("1m", T0, T0 + timedelta(minutes=1))
        assert [s.timestamp for s in found] == [T0, T0 + timedelta(minutes=1)]

    @pytest.mark.asyncio
    async def test_periods_are_separate(self):
        backend = InMemoryBackend()
        await backend.store_snapshot(make_snapshot(T0, "1m"))
        await backend.store_snapshot(make_snapshot(T0, "1h"))

        assert len(await backend.get_snapshots("1m", T0, T0)) == 1
        assert len(await backend.get_snapshots("5m", T0, T0)) == 0

    @pytest.mark.asyncio
    async def test_points_evict_oldest(self):
        backend = InMemoryBackend(max_points=2)
        for i in range(3):
            await backend.store_point("cpu", float(i), T0 + timedelta(seconds=i))

        points = await backend.get_points("cpu", T0, T0 + timedelta(minutes=1))
        assert [p.value for p in points] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_errors_accumulate_per_type(self):
        backend = InMemoryBackend()
        await backend.record_error("services", "timeout", "first", T0)
        await backend.record_error("services", "timeout", "second", T0 + timedelta(seconds=5))
        await backend.record_error("services", "refused", "other", T0)

        errors = {e.error_type: e for e in await backend.get_errors("services")}
        assert errors["timeout"].count == 2
        assert errors["timeout"].last_message == "second"
        assert errors["refused"].count == 1
        assert await backend.get_errors("agents") == []


# ============================================================
# REDIS BACKEND
# ============================================================

class TestRedisBackend:
    """Tests for the Redis key layout, against a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.zadd = AsyncMock(return_value=1)
        client.zremrangebyscore = AsyncMock(return_value=0)
        client.zrangebyscore = AsyncMock(return_value=[])
        client.incr = AsyncMock(return_value=3)
        client.hset = AsyncMock(return_value=1)
        client.hgetall = AsyncMock(return_value={})
        client.expire = AsyncMock(return_value=True)
        return client

    @pytest.mark.asyncio
    async def test_store_snapshot_trims_by_retention(self, redis_client):
        backend = RedisBackend(redis_client, prefix="p", retention_seconds={"1m": 60})
        await backend.store_snapshot(make_snapshot(T0))

        score = to_timestamp_ms(T0)
        key, mapping = redis_client.zadd.call_args.args
        assert key == "p:snapshot:1m"
        assert list(mapping.values()) == [score]
        redis_client.zremrangebyscore.assert_awaited_once_with("p:snapshot:1m", 0, score - 60_000)

    @pytest.mark.asyncio
    async def test_get_points_decodes_members(self, redis_client):
        redis_client.zrangebyscore.return_value = [
            json.dumps({"timestamp": "2025-01-01T12:00:00Z", "value": 4.5}).encode(),
        ]
        backend = RedisBackend(redis_client, prefix="p")

        points = await backend.get_points("cpu", T0, T0)
        assert points[0].value == 4.5
        assert points[0].timestamp == T0
        assert redis_client.zrangebyscore.call_args.args[0] == "p:ts:cpu"

    @pytest.mark.asyncio
    async def test_record_error_uses_server_counter(self, redis_client):
        backend = RedisBackend(redis_client, prefix="p", error_ttl_seconds=100)
        await backend.record_error("services", "timeout", "boom", T0)

        redis_client.incr.assert_awaited_once_with("p:error_count:services:timeout")
        key, field, payload = redis_client.hset.call_args.args
        assert (key, field) == ("p:errors:services", "timeout")
        assert json.loads(payload)["count"] == 3
        redis_client.expire.assert_any_await("p:errors:services", 100)


# ============================================================
# FACADE
# ============================================================

class TestTimeSeriesStorage:
    """Tests for the durable-preferred facade."""

    @pytest.mark.asyncio
    async def test_without_durable_starts_degraded(self, clock):
        storage = TimeSeriesStorage(clock=clock)
        assert storage.is_degraded
        assert storage.reenable_durable() is False

    @pytest.mark.asyncio
    async def test_writes_mirror_to_memory(self, clock):
        durable = InMemoryBackend()
        storage = TimeSeriesStorage(durable=durable, clock=clock)

        await storage.store_point("cpu", 1.0)

        assert len(await durable.get_points("cpu", T0, T0)) == 1
        assert len(await storage.memory.get_points("cpu", T0, T0)) == 1
        assert storage.state == BackendState.PREFERRED

    @pytest.mark.asyncio
    async def test_durable_write_failure_degrades_silently(self, clock):
        storage = TimeSeriesStorage(durable=failing_backend(), clock=clock)

        await storage.store_snapshot(make_snapshot(T0))

        assert storage.is_degraded
        found = await storage.get_snapshots("1m", T0, T0)
        assert len(found) == 1

    @pytest.mark.asyncio
    async def test_degradation_is_sticky(self, clock):
        durable = failing_backend()
        storage = TimeSeriesStorage(durable=durable, clock=clock)

        await storage.store_point("cpu", 1.0)
        await storage.store_point("cpu", 2.0)
        await storage.get_points("cpu", T0, T0)

        assert durable.store_point.await_count == 1
        durable.get_points.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_read_retries_on_memory(self, clock):
        durable = InMemoryBackend()
        storage = TimeSeriesStorage(durable=durable, clock=clock)
        await storage.store_point("cpu", 1.0)

        durable.get_points = AsyncMock(side_effect=ConnectionError("gone"))
        points = await storage.get_points("cpu", T0, T0)

        assert [p.value for p in points] == [1.0]
        assert storage.is_degraded

    @pytest.mark.asyncio
    async def test_reenable_returns_to_durable(self, clock):
        durable = failing_backend()
        storage = TimeSeriesStorage(durable=durable, clock=clock)
        await storage.store_point("cpu", 1.0)
        assert storage.is_degraded

        assert storage.reenable_durable() is True
        assert storage.state == BackendState.PREFERRED

    @pytest.mark.asyncio
    async def test_both_backends_failing_raises(self, clock):
        memory = InMemoryBackend()
        memory.store_point = AsyncMock(side_effect=RuntimeError("full"))
        storage = TimeSeriesStorage(memory=memory, durable=failing_backend(), clock=clock)

        with pytest.raises(StorageError):
            await storage.store_point("cpu", 1.0)

    @pytest.mark.asyncio
    async def test_record_error_stamps_clock(self, clock):
        storage = TimeSeriesStorage(clock=clock)
        await storage.record_error("services", "timeout", "boom")

        errors = await storage.get_errors("services")
        assert errors[0].last_occurred == T0
