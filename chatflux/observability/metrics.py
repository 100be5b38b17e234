"""Pipeline metrics.

Thread-safe counters and histograms grouped into an injected
``PipelineMetrics`` instance. Values are exposed as a plain dict snapshot.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Counter:
    """Monotonically increasing counter metric."""

    def __init__(self, name: str, description: str = "", label_names: Tuple[str, ...] = ()):
        self.name = name
        self.description = description
        self.label_names = label_names
        self._lock = threading.Lock()
        self._values: Dict[Tuple[str, ...], float] = {}

    def increment(self, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment the counter by the given amount."""
        if amount < 0:
            raise ValueError("Counter increment amount must be non-negative")
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    @property
    def value(self) -> float:
        """Total across all label sets."""
        with self._lock:
            return sum(self._values.values())

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        """Return the counter value for specific labels."""
        key = self._label_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {",".join(k) or "total": v for k, v in self._values.items()}

    def _label_key(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        if not labels:
            return ()
        return tuple(labels.get(k, "") for k in self.label_names)


class Histogram:
    """Distribution metric with fixed buckets."""

    def __init__(self, name: str, description: str = "", buckets: Optional[List[float]] = None):
        self.name = name
        self.description = description
        self.bucket_bounds = sorted(buckets or [1, 5, 10, 20, 50, 100])
        self._lock = threading.Lock()
        self._buckets = [0] * (len(self.bucket_bounds) + 1)  # +1 for +Inf
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        """Record an observation."""
        with self._lock:
            self._count += 1
            self._sum += value
            for i, bound in enumerate(self.bucket_bounds):
                if value <= bound:
                    self._buckets[i] += 1
            self._buckets[-1] += 1

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            buckets = {str(b): c for b, c in zip(self.bucket_bounds, self._buckets)}
            buckets["+Inf"] = self._buckets[-1]
            return {"count": self._count, "sum": self._sum, "buckets": buckets}


class PipelineMetrics:
    """Counters for ingestion, sink writes, batching, reads and reconciliation."""

    def __init__(self, prefix: str = "chatflux"):
        self.prefix = prefix

        self.messages_total = Counter(
            f"{prefix}_messages_total", "Inbound events accepted", ("kind",),
        )
        self.rejected_total = Counter(
            f"{prefix}_rejected_total", "Inbound events rejected at ingestion", ("reason",),
        )
        self.sink_failures_total = Counter(
            f"{prefix}_sink_failures_total", "Failed sink writes during fan-out", ("sink",),
        )
        self.batch_size = Histogram(
            f"{prefix}_batch_size", "Size of batches flushed to the store",
            buckets=[1, 5, 10, 20, 50, 100],
        )
        self.flushed_events_total = Counter(
            f"{prefix}_flushed_events_total", "Events durably written to the store",
        )
        self.failed_events_total = Counter(
            f"{prefix}_failed_events_total", "Events that could not be written", ("reason",),
        )
        self.cache_fallbacks_total = Counter(
            f"{prefix}_cache_fallbacks_total", "Reads served from the store", ("reason",),
        )
        self.reconciliation_runs_total = Counter(
            f"{prefix}_reconciliation_runs_total", "Reconciliation task runs", ("task", "status"),
        )

    def snapshot(self) -> Dict[str, Any]:
        """Return all metric values keyed by metric name."""
        metrics = (
            self.messages_total,
            self.rejected_total,
            self.sink_failures_total,
            self.batch_size,
            self.flushed_events_total,
            self.failed_events_total,
            self.cache_fallbacks_total,
            self.reconciliation_runs_total,
        )
        return {m.name: m.snapshot() for m in metrics}
