"""Global pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from farmsync.cache.store import CacheStore
from farmsync.events.scheduler import ManualScheduler
from farmsync.observability.metrics import MetricsRegistry


@pytest.fixture
def metrics() -> MetricsRegistry:
    """Uninitialized registry: every metric is a no-op."""
    return MetricsRegistry()


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Manually advanced clock starting at t=0."""
    return ManualScheduler()


@pytest.fixture
def cache(scheduler: ManualScheduler, metrics: MetricsRegistry) -> CacheStore:
    """Cache store driven by the manual clock."""
    return CacheStore(
        default_ttl=300.0,
        resource_ttls={"audit_logs": 60.0, "site_settings": 1800.0},
        max_entries=500,
        clock=scheduler.now,
        metrics=metrics,
    )
