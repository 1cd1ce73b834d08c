"""
Pulse - Data Models.

============================================================
PURPOSE
============================================================
Value types shared by the collector, storage, probes, the
health aggregator and the alert engine.

- Metrics: Counter, Gauge, Histogram (tagged by `type`)
- ProbeResult: outcome of exactly one probe invocation
- ModuleHealth / ErrorSummary: derived module rollups
- MetricsSnapshot / TimeSeriesPoint: persisted time series

All `to_dict()` methods produce JSON-ready dictionaries using
the camelCase field names of the HTTP surface. `from_dict()`
reverses them for values read back from the durable store.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union

from core.clock import from_iso8601, to_iso8601


# ============================================================
# HEALTH STATUS
# ============================================================

class HealthStatus(str, Enum):
    """Health status of a probe rollup, module or system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]


_STATUS_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Reduce statuses to the worst one (healthy when empty)."""
    worst = HealthStatus.HEALTHY
    for status in statuses:
        if status.severity > worst.severity:
            worst = status
    return worst


# ============================================================
# METRICS
# ============================================================

class MetricType(str, Enum):
    """Kinds of metric kept by the collector."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class CounterMetric:
    """Monotonic counter value for one label combination."""

    value: float = 0.0
    labels: Optional[Dict[str, str]] = None

    type: ClassVar[MetricType] = MetricType.COUNTER

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value, "value": self.value}
        if self.labels:
            data["labels"] = dict(self.labels)
        return data


@dataclass
class GaugeMetric:
    """Last-write-wins gauge value for one label combination."""

    value: float = 0.0
    labels: Optional[Dict[str, str]] = None

    type: ClassVar[MetricType] = MetricType.GAUGE

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value, "value": self.value}
        if self.labels:
            data["labels"] = dict(self.labels)
        return data


@dataclass
class HistogramMetric:
    """
    Aggregated view of a histogram's retained samples.

    Bucket keys are the boundary values rendered as strings;
    each bucket counts samples <= its boundary.
    """

    count: int = 0
    sum: float = 0.0
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    buckets: Dict[str, int] = field(default_factory=dict)
    labels: Optional[Dict[str, str]] = None

    type: ClassVar[MetricType] = MetricType.HISTOGRAM

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "count": self.count,
            "sum": self.sum,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "p50": self.p50,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
            "buckets": dict(self.buckets),
        }
        if self.labels:
            data["labels"] = dict(self.labels)
        return data


Metric = Union[CounterMetric, GaugeMetric, HistogramMetric]


def metric_from_dict(data: Dict[str, Any]) -> Metric:
    """Rebuild a metric from its `to_dict()` form."""
    metric_type = MetricType(data.get("type", MetricType.GAUGE.value))
    labels = data.get("labels") or None

    if metric_type == MetricType.COUNTER:
        return CounterMetric(value=float(data.get("value", 0)), labels=labels)
    if metric_type == MetricType.GAUGE:
        return GaugeMetric(value=float(data.get("value", 0)), labels=labels)

    return HistogramMetric(
        count=int(data.get("count", 0)),
        sum=float(data.get("sum", 0)),
        min=float(data.get("min", 0)),
        max=float(data.get("max", 0)),
        avg=float(data.get("avg", 0)),
        p50=float(data.get("p50", 0)),
        p90=float(data.get("p90", 0)),
        p95=float(data.get("p95", 0)),
        p99=float(data.get("p99", 0)),
        buckets={str(k): int(v) for k, v in (data.get("buckets") or {}).items()},
        labels=labels,
    )


# ============================================================
# PROBES
# ============================================================

@dataclass(frozen=True)
class ProbeResult:
    """
    Result of a single probe invocation.

    `details` is structured diagnostics for display, never for
    alert evaluation.
    """

    name: str
    healthy: bool
    latency_ms: float
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "healthy": self.healthy,
            "latencyMs": round(self.latency_ms, 3),
        }
        if self.message is not None:
            data["message"] = self.message
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeResult":
        return cls(
            name=data["name"],
            healthy=bool(data["healthy"]),
            latency_ms=float(data.get("latencyMs", 0.0)),
            message=data.get("message"),
            details=data.get("details"),
        )


# ============================================================
# MODULE HEALTH
# ============================================================

@dataclass
class ErrorSummary:
    """Accumulated errors of one type for a module."""

    error_type: str
    count: int
    last_occurred: datetime
    last_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "count": self.count,
            "lastOccurred": to_iso8601(self.last_occurred),
            "lastMessage": self.last_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorSummary":
        return cls(
            error_type=data["type"],
            count=int(data.get("count", 0)),
            last_occurred=from_iso8601(data["lastOccurred"]),
            last_message=data.get("lastMessage"),
        )


@dataclass
class ModuleHealth:
    """Derived health of one logical module."""

    name: str
    status: HealthStatus
    metrics: Dict[str, Metric]
    errors: List[ErrorSummary]
    last_updated: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "metrics": {name: m.to_dict() for name, m in self.metrics.items()},
            "errors": [e.to_dict() for e in self.errors],
            "lastUpdated": to_iso8601(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleHealth":
        return cls(
            name=data["name"],
            status=HealthStatus(data["status"]),
            metrics={
                name: metric_from_dict(m) for name, m in (data.get("metrics") or {}).items()
            },
            errors=[ErrorSummary.from_dict(e) for e in data.get("errors") or []],
            last_updated=from_iso8601(data["lastUpdated"]),
        )


# ============================================================
# TIME SERIES
# ============================================================

@dataclass
class MetricsSnapshot:
    """Point-in-time rollup of module health tagged with a period class."""

    timestamp: datetime
    period: str
    modules: Dict[str, ModuleHealth]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso8601(self.timestamp),
            "period": self.period,
            "modules": {name: m.to_dict() for name, m in self.modules.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsSnapshot":
        return cls(
            timestamp=from_iso8601(data["timestamp"]),
            period=data["period"],
            modules={
                name: ModuleHealth.from_dict(m)
                for name, m in (data.get("modules") or {}).items()
            },
        )


@dataclass
class TimeSeriesPoint:
    """Scalar sample of a named metric."""

    timestamp: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": to_iso8601(self.timestamp), "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeSeriesPoint":
        return cls(timestamp=from_iso8601(data["timestamp"]), value=float(data["value"]))


@dataclass
class HistoricalMetric:
    """A named series of points for charting."""

    name: str
    points: List[TimeSeriesPoint] = field(default_factory=list)
    aggregation: str = "avg"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "points": [p.to_dict() for p in self.points],
            "aggregation": self.aggregation,
        }
