"""
Tests for the Pulse Service.

============================================================
PURPOSE
============================================================
End-to-end behaviour of the scheduler cycle: probes, module
health, persistence, alert evaluation and streaming.

============================================================
"""

import asyncio
import pytest
from datetime import timedelta

from pulse.alerts import AlertChannelType, AlertEngine, AlertStatus, CooldownTracker, parse_alert_create
from pulse.alerts.channels import UiChannel
from pulse.config import PulseConfig
from pulse.exceptions import PulseError
from pulse.health import HealthAggregator
from pulse.metrics.collector import MetricCollector
from pulse.metrics.storage import TimeSeriesStorage
from pulse.models import GaugeMetric, HistogramMetric
from pulse.probes import CheckOutcome, HealthProbe, ProbeRegistry
from pulse.service import PulseService, PulseSubscription, scalar_value, threshold_view


class SwitchProbe(HealthProbe):
    """Probe whose health is flipped by the test."""

    def __init__(self, name: str, healthy: bool = True):
        super().__init__(name, is_deep=False)
        self.healthy = healthy

    async def _check(self) -> CheckOutcome:
        return CheckOutcome(self.healthy, None if self.healthy else "Connection refused")


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def config():
    return PulseConfig(scheduler_interval_seconds=0.01)


@pytest.fixture
def collector(clock):
    return MetricCollector(clock=clock)


@pytest.fixture
def storage(clock):
    return TimeSeriesStorage(clock=clock)


@pytest.fixture
def database_probe():
    return SwitchProbe("database")


@pytest.fixture
def registry(database_probe):
    registry = ProbeRegistry()
    registry.register(database_probe)
    registry.register(SwitchProbe("redis"))
    return registry


@pytest.fixture
def alerts(alert_store, collector, clock):
    return AlertEngine(
        alert_store,
        collector,
        channels=[UiChannel()],
        cooldowns=CooldownTracker(clock),
        clock=clock,
    )


@pytest.fixture
def service(collector, storage, registry, alerts, config, clock):
    aggregator = HealthAggregator(collector, storage, registry, config=config, clock=clock)
    return PulseService(collector, storage, registry, aggregator, alerts, config=config, clock=clock)


def latency_alert(alerts: AlertEngine):
    return alerts.create_alert(parse_alert_create({
        "name": "Slow queries",
        "condition": {
            "type": "metric.threshold",
            "target": "db.query.latency",
            "operator": "gte",
            "value": 500,
        },
        "channels": ["ui"],
    }))


def drain(subscription: PulseSubscription):
    frames = []
    while not subscription.queue.empty():
        frames.append(subscription.queue.get_nowait())
    return frames


# ============================================================
# METRIC VIEWS
# ============================================================

class TestMetricViews:
    """Tests for the scalar projections of histograms."""

    def test_scalar_value(self):
        assert scalar_value(GaugeMetric(value=3)) == 3
        assert scalar_value(HistogramMetric(count=2, p95=42)) == 42

    def test_threshold_view_projects_histograms(self):
        view = threshold_view({
            "latency": [HistogramMetric(count=1, p95=600, labels={"db": "main"})],
            "depth": [GaugeMetric(value=7)],
        })

        assert view["latency"] == [GaugeMetric(value=600, labels={"db": "main"})]
        assert view["depth"] == [GaugeMetric(value=7)]


# ============================================================
# CYCLE
# ============================================================

class TestRunCycle:
    """Tests for one scheduler cycle."""

    @pytest.mark.asyncio
    async def test_latency_threshold_alert_triggers_once(self, service, alerts, collector):
        config = latency_alert(alerts)
        collector.observe_histogram("db.query.latency", 600)

        report = await service.run_cycle()

        assert len(report.triggered) == 1
        outcome = report.triggered[0]
        assert outcome.event.status == AlertStatus.TRIGGERED
        assert outcome.event.alert_id == config.id
        assert outcome.event.channels == [AlertChannelType.UI]
        assert [r.success for r in outcome.results] == [True]

    @pytest.mark.asyncio
    async def test_unhealthy_probe_alert(self, service, alerts, database_probe):
        alerts.create_alert(parse_alert_create({
            "name": "Database down",
            "condition": {"type": "probe.unhealthy", "target": "database"},
            "channels": ["ui"],
        }))

        first = await service.run_cycle()
        database_probe.healthy = False
        second = await service.run_cycle()

        assert first.triggered == []
        assert len(second.triggered) == 1
        assert second.overview["status"] == "unhealthy"
        assert second.overview["alerts"]["active"] == 1

    @pytest.mark.asyncio
    async def test_overview_shape(self, service, clock):
        report = await service.run_cycle()
        overview = report.overview

        assert overview["status"] == "healthy"
        assert overview["probes"] == {"total": 2, "healthy": 2, "degraded": 0, "unhealthy": 0}
        assert set(overview["modules"]) == set(PulseConfig().module_metrics)
        assert overview["storage"] == {"state": "degraded"}
        assert overview["alerts"] == {"active": 0, "configured": 0, "activeEvents": []}
        assert service.last_cycle is report

    @pytest.mark.asyncio
    async def test_alert_failure_does_not_break_cycle(self, service, alerts):
        async def broken(context):
            raise RuntimeError("db locked")

        alerts.evaluate_alerts = broken
        report = await service.run_cycle()

        assert report.triggered == []
        assert report.overview["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_overview_on_demand_before_first_cycle(self, service):
        overview = await service.get_pulse_overview()

        assert overview["probes"]["total"] == 2
        assert service.last_cycle is None


# ============================================================
# HISTORY
# ============================================================

class TestHistory:
    """Tests for historical metric queries."""

    @pytest.mark.asyncio
    async def test_points_for_one_metric(self, service, collector, clock):
        collector.observe_histogram("db.query.latency", 100)
        await service.run_cycle()
        clock.advance(60)
        collector.observe_histogram("db.query.latency", 900)
        await service.run_cycle()

        history = await service.get_historical_metrics(metric="db.query.latency")

        assert len(history) == 1
        assert [p.value for p in history[0].points] == [100, 900]

    @pytest.mark.asyncio
    async def test_flattened_snapshots(self, service, collector, clock):
        collector.set_gauge("db.connections.active", 4)
        await service.run_cycle()
        clock.advance(60)
        collector.set_gauge("db.connections.active", 6)
        await service.run_cycle()

        history = await service.get_historical_metrics(period="1m")

        by_name = {h.name: h for h in history}
        assert [p.value for p in by_name["db.connections.active"].points] == [4, 6]

    @pytest.mark.asyncio
    async def test_default_period_reads_persisted_snapshots(self, service, collector):
        collector.set_gauge("db.connections.active", 3)
        await service.run_cycle()

        history = await service.get_historical_metrics()

        by_name = {h.name: h for h in history}
        assert [p.value for p in by_name["db.connections.active"].points] == [3]

    @pytest.mark.asyncio
    async def test_window_excludes_old_points(self, service, collector, clock):
        collector.set_gauge("db.connections.active", 1)
        await service.run_cycle()
        clock.advance(hours=2)

        history = await service.get_historical_metrics(metric="db.connections.active")
        assert history[0].points == []

        start = clock.now() - timedelta(hours=3)
        history = await service.get_historical_metrics(metric="db.connections.active", start=start)
        assert len(history[0].points) == 1

    @pytest.mark.asyncio
    async def test_unknown_period(self, service):
        with pytest.raises(PulseError):
            await service.get_historical_metrics(period="2d")


# ============================================================
# STREAMING
# ============================================================

class TestStreaming:
    """Tests for subscriptions."""

    def test_push_drops_oldest_when_full(self):
        subscription = PulseSubscription(maxsize=2)
        for i in range(3):
            subscription.push("update", i)

        assert [f["data"] for f in drain(subscription)] == [1, 2]

    @pytest.mark.asyncio
    async def test_cycle_frames(self, service, alerts, collector):
        latency_alert(alerts)
        collector.observe_histogram("db.query.latency", 600)
        subscription = service.subscribe()

        await service.run_cycle()

        frames = drain(subscription)
        assert [f["type"] for f in frames] == ["alert", "notification", "update"]
        assert frames[0]["data"]["status"] == "triggered"
        assert frames[2]["data"]["probes"]["total"] == 2

    @pytest.mark.asyncio
    async def test_unsubscribe_detaches_listeners(self, service, alerts):
        config = latency_alert(alerts)
        subscription = service.subscribe()
        assert service.subscriber_count == 1

        service.unsubscribe(subscription)
        await alerts.trigger_manual_alert(config.id)

        assert service.subscriber_count == 0
        assert alerts.get_channel(AlertChannelType.UI).listener_count == 0
        assert drain(subscription) == []


# ============================================================
# SCHEDULER
# ============================================================

class TestScheduler:
    """Tests for the periodic loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service):
        subscription = service.subscribe()

        await service.start()
        assert service.is_running
        await asyncio.sleep(0.05)
        await service.stop()

        assert service.is_running is False
        assert service.last_cycle is not None
        assert subscription.closed is True
        assert service.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_cycle_error_keeps_loop_alive(self, service, registry):
        calls = []
        original = registry.run_probes

        async def flaky(deep=False):
            calls.append(deep)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return await original(deep=deep)

        registry.run_probes = flaky
        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        assert len(calls) >= 2
        assert service.last_cycle is not None
