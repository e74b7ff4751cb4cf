"""Prometheus metrics for the sync core.

Provides counters for:
- Cache metrics (hits, misses, evictions, invalidations)
- Request deduplication (callers that joined an in-flight fetch)
- Change batching (batches delivered per trigger)
- Audit logging (entries written per mode, failed flushes)

Metrics live on a dedicated CollectorRegistry so that several sync clients
(and test runs) in one process never collide on the global registry.

Usage:
    from farmsync.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.cache_hits_total.labels(resource="chickens").inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, generate_latest

from farmsync.config import settings

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        """No-op."""
        pass


_NOOP = NoOpMetric()


@dataclass
class MetricsRegistry:
    """Registry for sync core Prometheus metrics."""

    cache_hits_total: Any = _NOOP
    cache_misses_total: Any = _NOOP
    cache_evictions_total: Any = _NOOP
    cache_invalidations_total: Any = _NOOP
    dedup_joined_total: Any = _NOOP
    change_batches_total: Any = _NOOP
    audit_entries_total: Any = _NOOP
    audit_flush_failures_total: Any = _NOOP

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    def initialize(self, enabled: bool | None = None) -> None:
        """Create the Prometheus collectors."""
        if self._initialized:
            return

        if enabled is None:
            enabled = settings.enable_metrics
        if not enabled:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        registry = CollectorRegistry()
        self._registry = registry

        self.cache_hits_total = Counter(
            "farmsync_cache_hits_total",
            "Cache hits",
            ["resource"],
            registry=registry,
        )
        self.cache_misses_total = Counter(
            "farmsync_cache_misses_total",
            "Cache misses",
            ["resource"],
            registry=registry,
        )
        self.cache_evictions_total = Counter(
            "farmsync_cache_evictions_total",
            "Cache entries evicted by capacity or TTL",
            ["resource", "reason"],
            registry=registry,
        )
        self.cache_invalidations_total = Counter(
            "farmsync_cache_invalidations_total",
            "Cache invalidations routed",
            ["resource", "source"],
            registry=registry,
        )
        self.dedup_joined_total = Counter(
            "farmsync_dedup_joined_total",
            "Reads that joined an in-flight identical fetch",
            ["resource"],
            registry=registry,
        )
        self.change_batches_total = Counter(
            "farmsync_change_batches_total",
            "Change event batches delivered",
            ["resource", "trigger"],
            registry=registry,
        )
        self.audit_entries_total = Counter(
            "farmsync_audit_entries_total",
            "Audit entries written",
            ["mode"],
            registry=registry,
        )
        self.audit_flush_failures_total = Counter(
            "farmsync_audit_flush_failures_total",
            "Audit bulk writes that failed and were re-queued",
            registry=registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Process-wide registry; counters are monotonic and safe to share
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the metrics registry, initializing it on first access."""
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry
