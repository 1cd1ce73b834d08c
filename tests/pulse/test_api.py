"""
Tests for the Pulse HTTP API.

============================================================
PURPOSE
============================================================
Drive the aiohttp routes mounted under /pulse and check status
codes and body shapes.

============================================================
"""

import pytest
from contextlib import asynccontextmanager

from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from pulse.alerts import AlertEngine, CooldownTracker
from pulse.alerts.channels import UiChannel
from pulse.api import setup_pulse_routes, sse_frame
from pulse.config import PulseConfig
from pulse.health import HealthAggregator
from pulse.metrics.collector import MetricCollector
from pulse.metrics.storage import TimeSeriesStorage
from pulse.probes import CheckOutcome, HealthProbe, ProbeRegistry
from pulse.service import PulseService


class StaticProbe(HealthProbe):
    def __init__(self, name: str, healthy: bool = True):
        super().__init__(name, is_deep=False)
        self._healthy = healthy

    async def _check(self) -> CheckOutcome:
        return CheckOutcome(self._healthy, None if self._healthy else "down")


ALERT_BODY = {
    "name": "Database down",
    "condition": {"type": "probe.unhealthy", "target": "database"},
    "channels": ["ui"],
    "cooldown": 120,
}


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def service(alert_store, clock):
    config = PulseConfig()
    collector = MetricCollector(clock=clock)
    storage = TimeSeriesStorage(clock=clock)
    registry = ProbeRegistry()
    registry.register(StaticProbe("database"))
    registry.register(StaticProbe("redis", healthy=False))
    alerts = AlertEngine(
        alert_store,
        collector,
        channels=[UiChannel()],
        cooldowns=CooldownTracker(clock),
        clock=clock,
    )
    aggregator = HealthAggregator(collector, storage, registry, config=config, clock=clock)
    return PulseService(collector, storage, registry, aggregator, alerts, config=config, clock=clock)


@asynccontextmanager
async def pulse_client(service: PulseService):
    app = web.Application()
    setup_pulse_routes(app, service)
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


async def create_alert(client: TestClient, **overrides) -> dict:
    response = await client.post("/pulse/alerts", json={**ALERT_BODY, **overrides})
    assert response.status == 201
    return await response.json()


# ============================================================
# OVERVIEW & PROBES
# ============================================================

class TestOverview:
    """Tests for the read-only endpoints."""

    @pytest.mark.asyncio
    async def test_overview_with_and_without_trailing_slash(self, service):
        async with pulse_client(service) as client:
            bare = await client.get("/pulse")
            slash = await client.get("/pulse/")

            assert bare.status == 200
            assert slash.status == 200
            data = await bare.json()
            assert data["status"] == "unhealthy"
            assert data["probes"]["total"] == 2

    @pytest.mark.asyncio
    async def test_health(self, service):
        async with pulse_client(service) as client:
            response = await client.get("/pulse/health")
            data = await response.json()

            assert response.status == 200
            assert data["probes"]["unhealthy"] == 1

    @pytest.mark.asyncio
    async def test_probe_list_and_lookup(self, service):
        async with pulse_client(service) as client:
            listing = await (await client.get("/pulse/probes/list")).json()
            assert sorted(listing["probes"]) == ["database", "redis"]

            response = await client.get("/pulse/probes/redis")
            data = await response.json()
            assert response.status == 200
            assert data["probe"]["healthy"] is False
            assert data["probe"]["message"] == "down"

    @pytest.mark.asyncio
    async def test_unknown_probe_is_404(self, service):
        async with pulse_client(service) as client:
            response = await client.get("/pulse/probes/x")

            assert response.status == 404
            assert (await response.json()) == {"error": "Probe 'x' not found"}

    @pytest.mark.asyncio
    async def test_all_probes(self, service):
        async with pulse_client(service) as client:
            data = await (await client.get("/pulse/probes")).json()
            assert {p["name"] for p in data["probes"]} == {"database", "redis"}


# ============================================================
# METRICS
# ============================================================

class TestMetrics:
    """Tests for live and historical metrics."""

    @pytest.mark.asyncio
    async def test_live_snapshot(self, service):
        service.collector.inc_counter("http.requests", labels={"route": "/"})

        async with pulse_client(service) as client:
            data = await (await client.get("/pulse/metrics")).json()

        assert data["timestamp"] == "2025-01-01T12:00:00+00:00"
        assert data["metrics"]["http.requests"][0]["labels"] == {"route": "/"}

    @pytest.mark.asyncio
    async def test_history_for_one_metric(self, service):
        service.collector.set_gauge("db.connections.active", 5)
        await service.run_cycle()

        async with pulse_client(service) as client:
            response = await client.get(
                "/pulse/metrics/history",
                params={"metric": "db.connections.active", "from": "2025-01-01T11:00:00Z"},
            )
            data = await response.json()

        assert response.status == 200
        assert data["metrics"][0]["name"] == "db.connections.active"
        assert [p["value"] for p in data["metrics"][0]["points"]] == [5]

    @pytest.mark.asyncio
    async def test_history_defaults_to_persisted_period(self, service):
        service.collector.set_gauge("db.connections.active", 5)
        await service.run_cycle()

        async with pulse_client(service) as client:
            response = await client.get("/pulse/metrics/history")
            data = await response.json()

        assert response.status == 200
        by_name = {m["name"]: m for m in data["metrics"]}
        assert [p["value"] for p in by_name["db.connections.active"]["points"]] == [5]

    @pytest.mark.asyncio
    async def test_bad_period_is_400(self, service):
        async with pulse_client(service) as client:
            response = await client.get("/pulse/metrics/history", params={"period": "bad"})
            data = await response.json()

        assert response.status == 400
        assert data["error"] == "Unknown period 'bad'"

    @pytest.mark.asyncio
    async def test_bad_timestamp_is_400(self, service):
        async with pulse_client(service) as client:
            response = await client.get("/pulse/metrics/history", params={"from": "yesterday"})

        assert response.status == 400


# ============================================================
# ALERT CRUD
# ============================================================

class TestAlertCrud:
    """Tests for alert configuration endpoints."""

    @pytest.mark.asyncio
    async def test_create_get_update_delete(self, service):
        async with pulse_client(service) as client:
            created = await create_alert(client)
            assert created["cooldown"] == 120
            assert created["enabled"] is True
            alert_id = created["id"]

            detail = await (await client.get(f"/pulse/alerts/{alert_id}")).json()
            assert detail["alert"]["name"] == "Database down"
            assert detail["events"] == []
            assert detail["onCooldown"] is False

            response = await client.put(f"/pulse/alerts/{alert_id}", json={"enabled": False})
            assert response.status == 200
            assert (await response.json())["enabled"] is False

            response = await client.delete(f"/pulse/alerts/{alert_id}")
            assert response.status == 204

            response = await client.get(f"/pulse/alerts/{alert_id}")
            assert response.status == 404

    @pytest.mark.asyncio
    async def test_list_alerts(self, service):
        async with pulse_client(service) as client:
            await create_alert(client)
            data = await (await client.get("/pulse/alerts")).json()

        assert len(data["alerts"]) == 1
        assert data["recentEvents"] == []

    @pytest.mark.asyncio
    async def test_unknown_alert_is_404(self, service):
        async with pulse_client(service) as client:
            for response in (
                await client.get("/pulse/alerts/missing"),
                await client.put("/pulse/alerts/missing", json={"enabled": False}),
                await client.delete("/pulse/alerts/missing"),
                await client.post("/pulse/alerts/missing/trigger"),
            ):
                assert response.status == 404
                assert (await response.json()) == {"error": "Alert not found"}

    @pytest.mark.asyncio
    async def test_invalid_body_is_400(self, service):
        async with pulse_client(service) as client:
            response = await client.post("/pulse/alerts", json={"name": "", "channels": ["pager"]})
            data = await response.json()

        assert response.status == 400
        assert data["error"] == "Invalid input"
        assert isinstance(data["details"], list)
        assert data["details"]

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, service):
        async with pulse_client(service) as client:
            response = await client.post(
                "/pulse/alerts",
                data="{not json",
                headers={"Content-Type": "application/json"},
            )
            data = await response.json()

        assert response.status == 400
        assert data["details"][0]["field"] == "body"


# ============================================================
# TRIGGER & RESOLVE
# ============================================================

class TestTriggerResolve:
    """Tests for manual trigger and resolve."""

    @pytest.mark.asyncio
    async def test_trigger_then_resolve(self, service):
        async with pulse_client(service) as client:
            alert_id = (await create_alert(client))["id"]

            response = await client.post(
                f"/pulse/alerts/{alert_id}/trigger", json={"details": {"drill": True}}
            )
            triggered = await response.json()
            assert response.status == 200
            assert triggered["event"]["status"] == "triggered"
            assert triggered["event"]["details"] == {"drill": True}
            assert triggered["results"] == [{"channel": "ui", "success": True}]

            response = await client.post(f"/pulse/alerts/{alert_id}/resolve")
            resolved = await response.json()
            assert resolved["resolved"] is True
            assert resolved["event"]["status"] == "resolved"

            detail = await (await client.get(f"/pulse/alerts/{alert_id}")).json()
            assert [e["status"] for e in detail["events"]] == ["resolved", "triggered"]

    @pytest.mark.asyncio
    async def test_resolve_without_trigger(self, service):
        async with pulse_client(service) as client:
            alert_id = (await create_alert(client))["id"]
            response = await client.post(f"/pulse/alerts/{alert_id}/resolve")

            assert response.status == 200
            assert (await response.json()) == {"resolved": False}


# ============================================================
# SSE
# ============================================================

class TestEventStream:
    """Tests for the SSE endpoint."""

    def test_sse_frame(self):
        assert sse_frame("update", {"a": 1}) == b'data: {"type": "update", "data": {"a": 1}}\n\n'

    @pytest.mark.asyncio
    async def test_stream_starts_with_snapshot(self, service):
        service.config.sse_update_interval_seconds = 0.05
        async with pulse_client(service) as client:
            response = await client.get("/pulse/events")
            assert response.headers["Content-Type"].startswith("text/event-stream")

            line = await response.content.readline()
            assert line.startswith(b'data: {"type": "snapshot"')
            response.close()
