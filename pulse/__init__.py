"""
Pulse Package.

============================================================
PURPOSE
============================================================
Health, metrics and alerting core for a running service.

PRINCIPLES:
1. INSTRUMENTATION NEVER FAILS - recording a metric is total
2. PROBES NEVER RAISE - every failure becomes an unhealthy result
3. STORAGE DEGRADES - Redis loss falls back to memory silently
4. DELIVERY IS ISOLATED - one broken channel never blocks another

============================================================
LAYOUT
============================================================
- metrics/: collector and rolling time-series storage
- probes/: shallow and deep dependency checks
- alerts/: configurations, evaluation, cooldowns, channels
- health: module and system health derivation
- service: scheduler cycle and streaming
- api: aiohttp routes under /pulse

============================================================
"""

from .config import LatencyThreshold, PulseConfig, get_config, set_config
from .exceptions import (
    AlertNotFoundError,
    AlertValidationError,
    ProbeNotFoundError,
    PulseError,
    StorageError,
)
from .models import (
    CounterMetric,
    GaugeMetric,
    HealthStatus,
    HistogramMetric,
    HistoricalMetric,
    MetricType,
    ModuleHealth,
    ProbeResult,
    TimeSeriesPoint,
)


__all__ = [
    # Config
    "PulseConfig",
    "LatencyThreshold",
    "get_config",
    "set_config",

    # Exceptions
    "PulseError",
    "StorageError",
    "ProbeNotFoundError",
    "AlertNotFoundError",
    "AlertValidationError",

    # Models
    "HealthStatus",
    "MetricType",
    "CounterMetric",
    "GaugeMetric",
    "HistogramMetric",
    "ProbeResult",
    "ModuleHealth",
    "TimeSeriesPoint",
    "HistoricalMetric",
]
