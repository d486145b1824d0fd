"""RevalCache Metrics Collector - Cache Metrics and Monitoring.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class CacheMetrics:
    """Cache metrics snapshot.

    Attributes:
        hits: Fresh hits
        stale_hits: Stale hits that scheduled a refresh
        revalidating_hits: Hits served while a refresh was running
        misses: Reads that fetched synchronously
        bypasses: no-store reads
        coalesced: Callers that joined another caller's fetch
        fetches: Fetcher executions
        fetch_errors: Fetcher executions that raised
        refreshes: Background refreshes that succeeded
        refresh_failures: Background refreshes that failed
        invalidations: Entries marked stale or invalid
        purges: Entries deleted explicitly
        expirations: Entries dropped on hard TTL
        entry_count: Current entries
        fetch_latency_avg_ms: Average fetcher latency
        fetch_latency_p99_ms: P99 fetcher latency
    """

    hits: int = 0
    stale_hits: int = 0
    revalidating_hits: int = 0
    misses: int = 0
    bypasses: int = 0
    coalesced: int = 0
    fetches: int = 0
    fetch_errors: int = 0
    refreshes: int = 0
    refresh_failures: int = 0
    invalidations: int = 0
    purges: int = 0
    expirations: int = 0
    entry_count: int = 0
    fetch_latency_avg_ms: float = 0.0
    fetch_latency_p99_ms: float = 0.0

    @property
    def served_from_cache(self) -> int:
        """Reads answered without waiting on a fetch."""
        return self.hits + self.stale_hits + self.revalidating_hits

    @property
    def hit_rate(self) -> float:
        """Share of cacheable reads served from cache."""
        total = self.served_from_cache + self.misses
        return self.served_from_cache / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "stale_hits": self.stale_hits,
            "revalidating_hits": self.revalidating_hits,
            "misses": self.misses,
            "bypasses": self.bypasses,
            "coalesced": self.coalesced,
            "fetches": self.fetches,
            "fetch_errors": self.fetch_errors,
            "refreshes": self.refreshes,
            "refresh_failures": self.refresh_failures,
            "invalidations": self.invalidations,
            "purges": self.purges,
            "expirations": self.expirations,
            "entry_count": self.entry_count,
            "hit_rate": self.hit_rate,
            "fetch_latency_avg_ms": self.fetch_latency_avg_ms,
            "fetch_latency_p99_ms": self.fetch_latency_p99_ms,
        }


_COUNTERS = (
    "hits",
    "stale_hits",
    "revalidating_hits",
    "misses",
    "bypasses",
    "coalesced",
    "fetches",
    "fetch_errors",
    "refreshes",
    "refresh_failures",
    "invalidations",
    "purges",
    "expirations",
)


class MetricsCollector:
    """Collects cache counters and fetch latency.

    Example:
        collector = MetricsCollector()
        collector.increment("hits")
        with Timer(collector):
            fetch()

        metrics = collector.get_metrics()
        print(f"Hit rate: {metrics.hit_rate:.2%}")
    """

    def __init__(self, latency_samples: int = 10000):
        """Initialize collector.

        Args:
            latency_samples: Number of latency samples kept
        """
        self._counters: Dict[str, int] = {name: 0 for name in _COUNTERS}
        self._entry_count = 0
        self._latencies: Deque[float] = deque(maxlen=latency_samples)
        self._lock = threading.RLock()
        self._exporters: List[Callable[[CacheMetrics], None]] = []

    def increment(self, name: str, amount: int = 1) -> None:
        """Bump a counter.

        Args:
            name: Counter name, one of the CacheMetrics counters
            amount: Increment
        """
        if name not in self._counters:
            raise KeyError(f"Unknown counter: {name}")
        with self._lock:
            self._counters[name] += amount

    def record_latency(self, ms: float) -> None:
        """Record fetcher latency in milliseconds."""
        with self._lock:
            self._latencies.append(ms)

    def set_entry_count(self, count: int) -> None:
        self._entry_count = count

    def _latency_avg(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    def _latency_p99(self) -> float:
        if not self._latencies:
            return 0.0
        ordered = sorted(self._latencies)
        idx = int(len(ordered) * 0.99)
        return ordered[min(idx, len(ordered) - 1)]

    def get_metrics(self) -> CacheMetrics:
        """Get current metrics.

        Returns:
            CacheMetrics instance
        """
        with self._lock:
            return CacheMetrics(
                entry_count=self._entry_count,
                fetch_latency_avg_ms=self._latency_avg(),
                fetch_latency_p99_ms=self._latency_p99(),
                **self._counters,
            )

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0
            self._entry_count = 0
            self._latencies.clear()

    def add_exporter(self, exporter: Callable[[CacheMetrics], None]) -> None:
        """Add metrics exporter."""
        self._exporters.append(exporter)

    def export(self) -> None:
        """Push a snapshot to every exporter."""
        metrics = self.get_metrics()
        for exporter in self._exporters:
            try:
                exporter(metrics)
            except Exception as e:
                logger.error(f"Exporter error: {e}")

    def to_prometheus(self, prefix: str = "revalcache") -> str:
        """Export metrics in Prometheus text format.

        Args:
            prefix: Metric name prefix

        Returns:
            Prometheus-formatted metrics
        """
        metrics = self.get_metrics()
        lines: List[str] = []
        for name in _COUNTERS:
            metric = f"{prefix}_{name}_total"
            lines.extend([
                f"# TYPE {metric} counter",
                f"{metric} {getattr(metrics, name)}",
            ])
        lines.extend([
            f"# TYPE {prefix}_hit_rate gauge",
            f"{prefix}_hit_rate {metrics.hit_rate:.4f}",
            f"# TYPE {prefix}_entries gauge",
            f"{prefix}_entries {metrics.entry_count}",
            f"# TYPE {prefix}_fetch_latency_avg_ms gauge",
            f"{prefix}_fetch_latency_avg_ms {metrics.fetch_latency_avg_ms:.2f}",
            f"# TYPE {prefix}_fetch_latency_p99_ms gauge",
            f"{prefix}_fetch_latency_p99_ms {metrics.fetch_latency_p99_ms:.2f}",
        ])
        return "\n".join(lines)

    def __repr__(self) -> str:
        metrics = self.get_metrics()
        return f"MetricsCollector(hits={metrics.hits}, hit_rate={metrics.hit_rate:.2%})"


class Timer:
    """Context manager recording elapsed time as fetch latency."""

    def __init__(self, collector: MetricsCollector):
        self._collector = collector
        self._start: float = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        elapsed_ms = (time.perf_counter() - self._start) * 1000
        self._collector.record_latency(elapsed_ms)


__all__ = ["MetricsCollector", "CacheMetrics", "Timer"]
