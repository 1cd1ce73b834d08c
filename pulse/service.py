"""
Pulse Service.

============================================================
PURPOSE
============================================================
Orchestrates the health/metrics/alerting components and exposes
read queries plus a streaming subscription to callers.

============================================================
SCHEDULER CYCLE
============================================================
Every `scheduler_interval_seconds`:

1. Run every shallow probe concurrently
2. Recompute module health from the collector snapshot
3. Persist a MetricsSnapshot tagged with the period class and
   one point per metric
4. Evaluate alerts against the probe results and metrics
5. Push the resulting overview to streaming subscribers

A failing step is logged; the loop keeps running.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock, to_iso8601
from pulse.alerts.engine import AlertEngine
from pulse.alerts.models import (
    AlertChannelType,
    AlertEvent,
    DispatchOutcome,
    EvaluationContext,
)
from pulse.config import PulseConfig, get_config
from pulse.exceptions import PulseError, StorageError
from pulse.health import HealthAggregator, probe_status
from pulse.metrics.collector import MetricCollector
from pulse.metrics.storage import TimeSeriesStorage
from pulse.models import (
    GaugeMetric,
    HistogramMetric,
    HistoricalMetric,
    Metric,
    MetricsSnapshot,
    ModuleHealth,
    ProbeResult,
    TimeSeriesPoint,
)
from pulse.probes.registry import ProbeRegistry


logger = logging.getLogger(__name__)


DEFAULT_HISTORY_WINDOW = timedelta(hours=1)
SUBSCRIBER_QUEUE_SIZE = 100


# ============================================================
# METRIC VIEWS
# ============================================================

def scalar_value(metric: Metric) -> float:
    """Counters and gauges report `value`; histograms their p95."""
    if isinstance(metric, HistogramMetric):
        return metric.p95
    return metric.value


def threshold_view(snapshot: Dict[str, List[Metric]]) -> Dict[str, List[Metric]]:
    """
    Snapshot with each histogram entry replaced by a gauge of its
    p95, so latency series can be targeted by threshold alerts.
    """
    return {
        name: [
            GaugeMetric(value=m.p95, labels=m.labels) if isinstance(m, HistogramMetric) else m
            for m in entries
        ]
        for name, entries in snapshot.items()
    }


# ============================================================
# SUBSCRIPTIONS
# ============================================================

class PulseSubscription:
    """
    One streaming consumer.

    Frames are `{"type": ..., "data": ...}` dicts:
    - update: overview pushed after each scheduler cycle
    - alert: every triggered/resolved transition
    - notification: events delivered over the `ui` channel
    """

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._cleanups: List[Callable[[], None]] = []
        self.closed = False

    def push(self, frame_type: str, data: Any) -> None:
        if self.closed:
            return
        frame = {"type": frame_type, "data": data}
        if self.queue.full():
            # Slow consumer: drop the oldest frame
            self.queue.get_nowait()
        self.queue.put_nowait(frame)

    def on_close(self, cleanup: Callable[[], None]) -> None:
        self._cleanups.append(cleanup)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for cleanup in self._cleanups:
            cleanup()
        self._cleanups.clear()


@dataclass
class CycleReport:
    """What one scheduler cycle observed and did."""

    timestamp: datetime
    probes: List[ProbeResult]
    modules: Dict[str, ModuleHealth]
    triggered: List[DispatchOutcome] = field(default_factory=list)
    overview: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# SERVICE
# ============================================================

class PulseService:
    """Facade over collector, storage, probes, health and alerts."""

    def __init__(
        self,
        collector: MetricCollector,
        storage: TimeSeriesStorage,
        registry: ProbeRegistry,
        aggregator: HealthAggregator,
        alerts: AlertEngine,
        config: Optional[PulseConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._collector = collector
        self._storage = storage
        self._registry = registry
        self._aggregator = aggregator
        self._alerts = alerts
        self._config = config or get_config()
        self._clock = clock or SystemClock()

        self._subscriptions: List[PulseSubscription] = []
        self._last_cycle: Optional[CycleReport] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def collector(self) -> MetricCollector:
        return self._collector

    @property
    def storage(self) -> TimeSeriesStorage:
        return self._storage

    @property
    def registry(self) -> ProbeRegistry:
        return self._registry

    @property
    def alerts(self) -> AlertEngine:
        return self._alerts

    @property
    def config(self) -> PulseConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_cycle(self) -> Optional[CycleReport]:
        return self._last_cycle

    # =========================================================
    # SCHEDULER
    # =========================================================

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Pulse scheduler started (every {self._config.scheduler_interval_seconds:g}s)"
        )

    async def stop(self) -> None:
        """Stop the scheduler loop and close subscriptions."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for subscription in list(self._subscriptions):
            self.unsubscribe(subscription)

        logger.info("Pulse scheduler stopped")

    async def _run(self) -> None:
        """Main run loop."""
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Pulse cycle error: {e}")

            await asyncio.sleep(self._config.scheduler_interval_seconds)

    async def run_cycle(self) -> CycleReport:
        """Run one probe -> health -> persist -> alerts -> push cycle."""
        probes = await self._registry.run_probes(deep=False)
        snapshot = self._collector.get_snapshot()
        modules = await self._all_modules(snapshot)
        now = self._clock.now()

        await self._persist(now, modules, snapshot)

        context = EvaluationContext.from_results(probes, threshold_view(snapshot))
        try:
            triggered = await self._alerts.evaluate_alerts(context)
        except Exception as e:
            logger.error(f"Alert evaluation failed: {e}")
            triggered = []

        report = CycleReport(timestamp=now, probes=probes, modules=modules, triggered=triggered)
        report.overview = self._build_overview(probes, modules, now)
        self._last_cycle = report

        self._publish("update", report.overview)
        return report

    async def _all_modules(self, snapshot: Dict[str, List[Metric]]) -> Dict[str, ModuleHealth]:
        names = self._aggregator.module_names
        results = await asyncio.gather(
            *(self._aggregator.get_module_health(name, snapshot) for name in names)
        )
        return dict(zip(names, results))

    async def _persist(
        self,
        now: datetime,
        modules: Dict[str, ModuleHealth],
        snapshot: Dict[str, List[Metric]],
    ) -> None:
        try:
            await self._storage.store_snapshot(
                MetricsSnapshot(timestamp=now, period=self._config.snapshot_period, modules=modules)
            )
            for name, entries in snapshot.items():
                if entries:
                    await self._storage.store_point(name, scalar_value(entries[0]), now)
        except StorageError as e:
            logger.error(f"Failed to persist metrics snapshot: {e}")

    # =========================================================
    # OVERVIEW
    # =========================================================

    def _alert_summary(self) -> Dict[str, Any]:
        try:
            active = self._alerts.get_active_alerts()
            configured = len(self._alerts.list_alerts())
        except Exception as e:
            logger.warning(f"Alert summary unavailable: {e}")
            return {"active": 0, "configured": 0, "activeEvents": [], "error": str(e)}
        return {
            "active": len(active),
            "configured": configured,
            "activeEvents": [e.to_dict() for e in active],
        }

    def _build_overview(
        self,
        probes: List[ProbeResult],
        modules: Dict[str, ModuleHealth],
        timestamp: datetime,
    ) -> Dict[str, Any]:
        healthy = sum(1 for p in probes if p.healthy)

        return {
            "timestamp": to_iso8601(timestamp),
            "status": probe_status(probes).value,
            "uptime": self._collector.get_uptime(),
            "probes": {
                "total": len(probes),
                "healthy": healthy,
                "degraded": 0,
                "unhealthy": len(probes) - healthy,
            },
            "modules": {name: m.status.value for name, m in modules.items()},
            "alerts": self._alert_summary(),
            "storage": {"state": self._storage.state.value},
            "server": self._aggregator.get_process_stats().to_dict(),
        }

    async def get_pulse_overview(self) -> Dict[str, Any]:
        """
        Overview of the latest cycle.

        Runs shallow probes and module health on demand when no
        cycle has completed yet.
        """
        if self._last_cycle is not None:
            cycle = self._last_cycle
            return self._build_overview(cycle.probes, cycle.modules, cycle.timestamp)

        probes = await self._registry.run_probes(deep=False)
        modules = await self._all_modules(self._collector.get_snapshot())
        return self._build_overview(probes, modules, self._clock.now())

    # =========================================================
    # PROBES
    # =========================================================

    async def get_all_probes(self, deep: bool = False) -> List[ProbeResult]:
        return await self._registry.run_probes(deep=deep)

    async def get_probe(self, name: str, deep: bool = False) -> Optional[ProbeResult]:
        return await self._registry.run_probe(name, deep=deep)

    def list_probes(self) -> List[str]:
        return self._registry.list_probes()

    async def get_system_health(self, deep: bool = False) -> Dict[str, Any]:
        if deep:
            health = await self._aggregator.get_deep_health()
        else:
            health = await self._aggregator.get_system_health()
        return health.to_dict()

    # =========================================================
    # LLM PROVIDERS
    # =========================================================

    async def get_llm_health(self) -> Dict[str, Any]:
        return await self._aggregator.get_llm_health()

    async def get_openrouter_health(self) -> Dict[str, Any]:
        return await self._aggregator.get_openrouter_health()

    async def get_ollama_health(self) -> Dict[str, Any]:
        return await self._aggregator.get_ollama_health()

    # =========================================================
    # MODULES & METRICS
    # =========================================================

    async def get_modules(self) -> Dict[str, ModuleHealth]:
        return await self._aggregator.get_all_modules_health()

    def get_metrics_snapshot(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso8601(self._clock.now()),
            "metrics": self._collector.to_dict(),
        }

    async def get_historical_metrics(
        self,
        metric: Optional[str] = None,
        period: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[HistoricalMetric]:
        """
        Historical series over [start, end] (default: last hour).

        With `metric`, returns that metric's stored points.
        Otherwise flattens the stored snapshots of `period` into
        one series per module metric. `period` defaults to the
        class the scheduler persists.
        """
        period = period or self._config.snapshot_period
        if period not in self._config.retention_seconds:
            raise PulseError(
                f"Unknown period '{period}'",
                details={"period": period, "allowed": sorted(self._config.retention_seconds)},
            )

        end = end or self._clock.now()
        start = start or end - DEFAULT_HISTORY_WINDOW

        if metric:
            points = await self._storage.get_points(metric, start, end)
            return [HistoricalMetric(name=metric, points=points)]

        series: Dict[str, HistoricalMetric] = {}
        for snapshot in await self._storage.get_snapshots(period, start, end):
            for module in snapshot.modules.values():
                for name, value in module.metrics.items():
                    history = series.setdefault(name, HistoricalMetric(name=name, points=[]))
                    history.points.append(
                        TimeSeriesPoint(timestamp=snapshot.timestamp, value=scalar_value(value))
                    )
        return list(series.values())

    # =========================================================
    # STREAMING
    # =========================================================

    def subscribe(self) -> PulseSubscription:
        """Register a streaming consumer. Pair with `unsubscribe`."""
        subscription = PulseSubscription()

        def on_transition(event: AlertEvent) -> None:
            subscription.push("alert", event.to_dict())

        subscription.on_close(self._alerts.add_listener(on_transition))

        ui = self._alerts.get_channel(AlertChannelType.UI)
        if ui is not None:
            subscription.on_close(
                ui.register_listener(
                    lambda event: subscription.push("notification", event.to_dict())
                )
            )

        self._subscriptions.append(subscription)
        logger.debug(f"Pulse subscriber added ({len(self._subscriptions)} active)")
        return subscription

    def unsubscribe(self, subscription: PulseSubscription) -> None:
        subscription.close()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Pulse subscriber removed ({len(self._subscriptions)} active)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _publish(self, frame_type: str, data: Any) -> None:
        for subscription in list(self._subscriptions):
            subscription.push(frame_type, data)
