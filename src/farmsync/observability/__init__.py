"""Observability module for farmsync.

Provides structured logging and metrics:
- JSON structured logging with correlation ids
- Prometheus counters for cache, batching and audit activity
"""

from farmsync.observability.logging import (
    LogContext,
    configure_logging,
    correlation_id_var,
    get_logger,
    request_id_var,
    user_id_var,
)
from farmsync.observability.metrics import (
    MetricsRegistry,
    NoOpMetric,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    "request_id_var",
    "correlation_id_var",
    "user_id_var",
    # Metrics
    "MetricsRegistry",
    "NoOpMetric",
    "get_metrics",
    "metrics_registry",
]
