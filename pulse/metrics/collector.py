"""
Pulse - Metric Collector.

============================================================
RESPONSIBILITY
============================================================
In-process store of counters, gauges and histograms, keyed by
metric name and a canonical label key.

- Counters: add deltas, never fail
- Gauges: last write wins; decrement floors at 0
- Histograms: bounded rolling sample in a ring buffer,
  percentiles recomputed on read, cumulative bucket counts
  maintained at write time

A name belongs to the first kind that records it. A later write
of another kind under the same name is dropped with a warning.

============================================================
THREAD SAFETY
============================================================
Every mutation and read happens under one lock. Percentile
reads copy the live sample buffer and sort the copy.

============================================================
"""

import logging
import math
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from core.clock import ClockProtocol, SystemClock
from pulse.config import DEFAULT_HISTOGRAM_BUCKETS
from pulse.models import CounterMetric, GaugeMetric, HistogramMetric, Metric, MetricType


logger = logging.getLogger(__name__)

T = TypeVar("T")

Labels = Optional[Dict[str, str]]

DEFAULT_LABEL_KEY = "__default__"


def labels_to_key(labels: Labels) -> str:
    """
    Canonical key for a label set.

    Labels are sorted by key and joined as `k=v` pairs with `,`.
    Backslash, `,` and `=` inside keys and values are escaped with a
    backslash. Absent or empty labels map to the default sentinel.
    """
    if not labels:
        return DEFAULT_LABEL_KEY
    return ",".join(
        f"{_escape_label(k)}={_escape_label(str(labels[k]))}" for k in sorted(labels)
    )


def _escape_label(part: str) -> str:
    return part.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=")


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile over an ascending sequence."""
    if not sorted_values:
        return 0.0
    index = math.ceil((p / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


# ============================================================
# RING BUFFER
# ============================================================

class SampleRing:
    """
    Fixed-capacity sample buffer.

    Appending beyond capacity overwrites the oldest sample.
    """

    __slots__ = ("_capacity", "_slots", "_start", "_size")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._slots: List[float] = [0.0] * capacity
        self._start = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, value: float) -> None:
        if self._size < self._capacity:
            self._slots[(self._start + self._size) % self._capacity] = value
            self._size += 1
        else:
            self._slots[self._start] = value
            self._start = (self._start + 1) % self._capacity

    def values(self) -> List[float]:
        """Copy of the retained samples, oldest first."""
        end = self._start + self._size
        if end <= self._capacity:
            return self._slots[self._start:end]
        return self._slots[self._start:] + self._slots[:end - self._capacity]


class _HistogramState:
    __slots__ = ("samples", "bucket_counts")

    def __init__(self, capacity: int, bucket_count: int) -> None:
        self.samples = SampleRing(capacity)
        self.bucket_counts = [0] * bucket_count


# ============================================================
# COLLECTOR
# ============================================================

class MetricCollector:
    """
    Label-keyed metric store.

    One instance is constructed at process start and passed to
    every component that records or reads metrics.
    """

    def __init__(
        self,
        buckets: Optional[Sequence[float]] = None,
        max_samples: int = 10000,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._buckets: List[float] = sorted(buckets or DEFAULT_HISTOGRAM_BUCKETS)
        self._bucket_keys = [_format_bound(b) for b in self._buckets]
        self._max_samples = max_samples
        self._clock = clock or SystemClock()

        self._counters: Dict[str, Dict[str, float]] = {}
        self._gauges: Dict[str, Dict[str, float]] = {}
        self._histograms: Dict[str, Dict[str, _HistogramState]] = {}
        self._labels: Dict[str, Dict[str, str]] = {}
        self._kinds: Dict[str, MetricType] = {}
        self._kind_conflicts: set = set()

        self._lock = threading.Lock()
        self._started_at = self._clock.timestamp()

    @property
    def buckets(self) -> List[float]:
        return list(self._buckets)

    def _remember_labels(self, key: str, labels: Labels) -> None:
        if key != DEFAULT_LABEL_KEY and key not in self._labels:
            self._labels[key] = dict(labels)

    def _labels_for(self, key: str) -> Labels:
        labels = self._labels.get(key)
        return dict(labels) if labels is not None else None

    def _claim(self, name: str, kind: MetricType) -> bool:
        """Bind `name` to `kind`. False when another kind owns it. Hold the lock."""
        owner = self._kinds.setdefault(name, kind)
        if owner == kind:
            return True
        if (name, kind) not in self._kind_conflicts:
            self._kind_conflicts.add((name, kind))
            logger.warning(
                f"Metric {name} is a {owner.value}, dropping {kind.value} writes"
            )
        return False

    # =========================================================
    # COUNTER
    # =========================================================

    def inc_counter(self, name: str, delta: float = 1, labels: Labels = None) -> None:
        key = labels_to_key(labels)
        with self._lock:
            if not self._claim(name, MetricType.COUNTER):
                return
            self._remember_labels(key, labels)
            series = self._counters.setdefault(name, {})
            series[key] = series.get(key, 0) + delta

    def get_counter(self, name: str, labels: Labels = None) -> CounterMetric:
        key = labels_to_key(labels)
        with self._lock:
            value = self._counters.get(name, {}).get(key, 0)
        return CounterMetric(value=value, labels=dict(labels) if labels else None)

    # =========================================================
    # GAUGE
    # =========================================================

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        key = labels_to_key(labels)
        with self._lock:
            if not self._claim(name, MetricType.GAUGE):
                return
            self._remember_labels(key, labels)
            self._gauges.setdefault(name, {})[key] = value

    def inc_gauge(self, name: str, delta: float = 1, labels: Labels = None) -> None:
        key = labels_to_key(labels)
        with self._lock:
            if not self._claim(name, MetricType.GAUGE):
                return
            self._remember_labels(key, labels)
            series = self._gauges.setdefault(name, {})
            series[key] = series.get(key, 0) + delta

    def dec_gauge(self, name: str, delta: float = 1, labels: Labels = None) -> None:
        key = labels_to_key(labels)
        with self._lock:
            if not self._claim(name, MetricType.GAUGE):
                return
            self._remember_labels(key, labels)
            series = self._gauges.setdefault(name, {})
            series[key] = max(0, series.get(key, 0) - delta)

    def get_gauge(self, name: str, labels: Labels = None) -> GaugeMetric:
        key = labels_to_key(labels)
        with self._lock:
            value = self._gauges.get(name, {}).get(key, 0)
        return GaugeMetric(value=value, labels=dict(labels) if labels else None)

    # =========================================================
    # HISTOGRAM
    # =========================================================

    def observe_histogram(self, name: str, value: float, labels: Labels = None) -> None:
        key = labels_to_key(labels)
        with self._lock:
            if not self._claim(name, MetricType.HISTOGRAM):
                return
            self._remember_labels(key, labels)
            series = self._histograms.setdefault(name, {})
            state = series.get(key)
            if state is None:
                state = _HistogramState(self._max_samples, len(self._buckets))
                series[key] = state

            state.samples.append(value)
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    state.bucket_counts[i] += 1

    def get_histogram(self, name: str, labels: Labels = None) -> HistogramMetric:
        key = labels_to_key(labels)
        with self._lock:
            state = self._histograms.get(name, {}).get(key)
            if state is None:
                samples: List[float] = []
                bucket_counts = [0] * len(self._buckets)
            else:
                samples = state.samples.values()
                bucket_counts = list(state.bucket_counts)

        return self._summarize(samples, bucket_counts, dict(labels) if labels else None)

    def _summarize(
        self,
        samples: List[float],
        bucket_counts: List[int],
        labels: Labels,
    ) -> HistogramMetric:
        buckets = dict(zip(self._bucket_keys, bucket_counts))
        if not samples:
            return HistogramMetric(buckets=buckets, labels=labels)

        samples.sort()
        count = len(samples)
        total = sum(samples)
        return HistogramMetric(
            count=count,
            sum=total,
            min=samples[0],
            max=samples[-1],
            avg=total / count,
            p50=percentile(samples, 50),
            p90=percentile(samples, 90),
            p95=percentile(samples, 95),
            p99=percentile(samples, 99),
            buckets=buckets,
            labels=labels,
        )

    # =========================================================
    # TIMING HELPERS
    # =========================================================

    def start_timer(self, name: str, labels: Labels = None) -> Callable[[], float]:
        """
        Start a wall-clock timer.

        Returns:
            A stop function that records the elapsed milliseconds
            into the histogram and returns them. Call it once.
        """
        started = self._clock.monotonic()

        def stop() -> float:
            duration_ms = (self._clock.monotonic() - started) * 1000
            self.observe_histogram(name, duration_ms, labels)
            return duration_ms

        return stop

    async def time(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        labels: Labels = None,
    ) -> T:
        """Await `fn()` and record its duration, even when it raises."""
        stop = self.start_timer(name, labels)
        try:
            return await fn()
        finally:
            stop()

    # =========================================================
    # SNAPSHOT & UTILITIES
    # =========================================================

    def get_snapshot(self) -> Dict[str, List[Metric]]:
        """One metric entry per name and label combination."""
        result: Dict[str, List[Metric]] = {}

        with self._lock:
            for name, series in self._counters.items():
                result[name] = [
                    CounterMetric(value=value, labels=self._labels_for(key))
                    for key, value in series.items()
                ]

            for name, series in self._gauges.items():
                result[name] = [
                    GaugeMetric(value=value, labels=self._labels_for(key))
                    for key, value in series.items()
                ]

            histogram_copies = {
                name: [
                    (key, state.samples.values(), list(state.bucket_counts))
                    for key, state in series.items()
                ]
                for name, series in self._histograms.items()
            }
            label_copies = {
                key: self._labels_for(key)
                for entries in histogram_copies.values()
                for key, _, _ in entries
            }

        for name, entries in histogram_copies.items():
            result[name] = [
                self._summarize(samples, bucket_counts, label_copies[key])
                for key, samples, bucket_counts in entries
            ]

        return result

    def get_uptime(self) -> int:
        """Whole seconds since construction or the last reset."""
        return int(self._clock.timestamp() - self._started_at)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._labels.clear()
            self._kinds.clear()
            self._kind_conflicts.clear()
            self._started_at = self._clock.timestamp()
        logger.info("Metric collector reset")

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: [m.to_dict() for m in metrics]
            for name, metrics in self.get_snapshot().items()
        }
