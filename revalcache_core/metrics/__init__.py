"""Metrics module - Cache metrics collection."""

from revalcache_core.metrics.collector import (
    MetricsCollector,
    CacheMetrics,
    Timer,
)

__all__ = [
    "MetricsCollector",
    "CacheMetrics",
    "Timer",
]
