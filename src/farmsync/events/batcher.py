"""Per-resource batching of real-time change events.

Each resource moves through Idle -> Accumulating -> Flushing -> Idle:

- The first event for an idle resource opens a batch and starts a window timer.
- Further events append to the open batch.
- The batch is delivered when the window elapses or, under an event storm,
  as soon as it reaches max_batch_size (the timer is then cancelled).

Delivery takes and clears the buffer before invoking the callback, so a
failing callback can't wedge the resource or lose later events.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from farmsync.events.scheduler import CancelToken, Scheduler
from farmsync.events.schemas import BatchTrigger, ChangeBatch, ChangeEvent
from farmsync.observability.metrics import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

BatchCallback = Callable[[ChangeBatch], None]

DEFAULT_WINDOW = 1.0
DEFAULT_MAX_BATCH_SIZE = 50


class BatchState(str, Enum):
    """Batching state of one resource."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class _OpenBatch:
    resource: str
    opened_at: float
    timer: CancelToken | None = None
    events: list[ChangeEvent] = field(default_factory=list)


class SubscriptionBatcher:
    """Groups change events per resource and delivers one batch per window."""

    def __init__(
        self,
        callback: BatchCallback,
        scheduler: Scheduler,
        *,
        window: float = DEFAULT_WINDOW,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        metrics: MetricsRegistry | None = None,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.callback = callback
        self.scheduler = scheduler
        self.window = window
        self.max_batch_size = max_batch_size
        self._metrics = metrics or get_metrics()

        self._open: dict[str, _OpenBatch] = {}
        self._flushing: set[str] = set()

    def state(self, resource: str) -> BatchState:
        """Current state of a resource."""
        if resource in self._flushing:
            return BatchState.FLUSHING
        if resource in self._open:
            return BatchState.ACCUMULATING
        return BatchState.IDLE

    def pending(self, resource: str) -> int:
        """Events buffered for a resource."""
        batch = self._open.get(resource)
        return len(batch.events) if batch else 0

    @property
    def open_resources(self) -> list[str]:
        """Resources with a batch currently accumulating."""
        return list(self._open)

    def add(self, event: ChangeEvent) -> None:
        """Buffer an event, flushing immediately when the batch is full."""
        batch = self._open.get(event.resource)
        if batch is None:
            batch = _OpenBatch(resource=event.resource, opened_at=self.scheduler.now())
            self._open[event.resource] = batch
            batch.timer = self.scheduler.after(
                self.window, lambda: self._on_timer(event.resource, batch)
            )

        batch.events.append(event)

        if len(batch.events) >= self.max_batch_size:
            self._deliver(event.resource, BatchTrigger.CAP)

    def flush(self, resource: str) -> ChangeBatch | None:
        """Deliver a resource's open batch now."""
        return self._deliver(resource, BatchTrigger.MANUAL)

    def flush_all(self) -> list[ChangeBatch]:
        """Deliver every open batch now."""
        delivered = []
        for resource in list(self._open):
            batch = self._deliver(resource, BatchTrigger.MANUAL)
            if batch is not None:
                delivered.append(batch)
        return delivered

    def close(self) -> None:
        """Flush everything and stop all window timers."""
        self.flush_all()

    def _on_timer(self, resource: str, batch: _OpenBatch) -> None:
        # A cap flush may already have replaced this batch
        if self._open.get(resource) is batch:
            self._deliver(resource, BatchTrigger.TIMER)

    def _deliver(self, resource: str, trigger: BatchTrigger) -> ChangeBatch | None:
        batch = self._open.pop(resource, None)
        if batch is None or not batch.events:
            return None
        if batch.timer is not None:
            batch.timer.cancel()

        aggregate = ChangeBatch.from_events(resource, batch.events, trigger)
        self._metrics.change_batches_total.labels(resource=resource, trigger=trigger.value).inc()
        logger.debug(f"Delivering {len(aggregate)} {resource} change events ({trigger.value})")

        self._flushing.add(resource)
        try:
            self.callback(aggregate)
        except Exception:
            logger.exception(f"Change batch callback failed for {resource}")
        finally:
            self._flushing.discard(resource)
        return aggregate
