"""
Pulse metrics: in-process collection and rolling storage.
"""

from pulse.metrics.collector import MetricCollector, SampleRing, labels_to_key, percentile
from pulse.metrics.storage import (
    BackendEvent,
    BackendState,
    InMemoryBackend,
    RedisBackend,
    TimeSeriesBackend,
    TimeSeriesStorage,
    next_backend_state,
)


__all__ = [
    "MetricCollector",
    "SampleRing",
    "labels_to_key",
    "percentile",
    "BackendEvent",
    "BackendState",
    "InMemoryBackend",
    "RedisBackend",
    "TimeSeriesBackend",
    "TimeSeriesStorage",
    "next_backend_state",
]
