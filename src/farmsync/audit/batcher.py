"""Batched audit log writer.

Critical actions (create, delete, login, logout) are written one at a time
before record() returns, and their write errors reach the caller. Everything
else is queued and written in bulk when either:

- the debounce timer (armed by the first entry queued after a flush) elapses, or
- the queue reaches batch_size.

Read-style actions (view, search, filter) are dropped unless forced.

A failed bulk write puts its entries back at the front of the queue and
re-arms the timer; entries are never discarded. Shutdown flushes what is
left on a best-effort basis: entries still queued when the process dies are
lost.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from farmsync.audit.schemas import AuditAction, AuditEntry, normalize_action
from farmsync.events.scheduler import CancelToken, Scheduler
from farmsync.observability.logging import user_id_var
from farmsync.observability.metrics import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

AuditWriter = Callable[[list[AuditEntry]], Awaitable[Any]]

DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL = 5.0
ANONYMOUS_ACTOR = "anonymous"


@dataclass
class AuditStats:
    """Counters for audit writer activity."""

    entries_immediate: int = 0
    entries_batched: int = 0
    entries_dropped: int = 0
    batches_flushed: int = 0
    flush_errors: int = 0
    last_flush_time: float = 0.0


class AuditBatcher:
    """Audit log writer with immediate and deferred paths.

    Usable as an async context manager; leaving the context flushes the queue.
    """

    def __init__(
        self,
        writer: AuditWriter,
        scheduler: Scheduler,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        metrics: MetricsRegistry | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.writer = writer
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self._metrics = metrics or get_metrics()

        self._queue: list[AuditEntry] = []
        self._timer: CancelToken | None = None
        self.stats = AuditStats()

    @property
    def queue_length(self) -> int:
        """Entries waiting for the next flush."""
        return len(self._queue)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and self._timer.active

    async def record(
        self,
        action: AuditAction | str,
        resource: str,
        record_id: Any = None,
        before: Any = None,
        after: Any = None,
        *,
        immediate: bool = False,
        force: bool = False,
        actor_id: str | None = None,
    ) -> AuditEntry | None:
        """Record an audit entry.

        Args:
            action: Audit action (CREATE, UPDATE, VIEW, ...)
            resource: Resource the action touched
            record_id: Id of the touched record
            before: Record state before the action
            after: Record state after the action
            immediate: Write now even if the action is not critical
            force: Record read-style actions that are otherwise dropped
            actor_id: Acting user; defaults to the logging context's user_id

        Returns:
            The entry written or queued, or None if the action was dropped.

        Raises:
            Whatever the writer raises, for immediate writes only.
        """
        entry = AuditEntry(
            actor_id=actor_id or user_id_var.get() or ANONYMOUS_ACTOR,
            action=normalize_action(action),
            resource=resource,
            record_id=None if record_id is None else str(record_id),
            before=before,
            after=after,
        )

        if entry.is_read and not force:
            self.stats.entries_dropped += 1
            return None

        if immediate or entry.is_critical:
            await self.writer([entry])
            self.stats.entries_immediate += 1
            self._metrics.audit_entries_total.labels(mode="immediate").inc()
            return entry

        self._queue.append(entry)
        if len(self._queue) >= self.batch_size:
            await self.flush()
        else:
            self._arm_timer()
        return entry

    async def flush(self) -> int:
        """Write all queued entries in one bulk call.

        Returns:
            Number of entries written (0 on failure or empty queue).
        """
        self._cancel_timer()
        if not self._queue:
            return 0

        batch = self._queue
        self._queue = []
        start_time = time.perf_counter()

        try:
            await self.writer(batch)
        except Exception as e:
            logger.error(f"Error flushing batch of {len(batch)} audit entries: {e}")
            self.stats.flush_errors += 1
            self._metrics.audit_flush_failures_total.inc()

            # Re-queue failed entries for retry (at front of queue)
            self._queue[:0] = batch
            self._arm_timer()
            return 0

        latency_ms = (time.perf_counter() - start_time) * 1000
        self.stats.entries_batched += len(batch)
        self.stats.batches_flushed += 1
        self.stats.last_flush_time = time.time()
        self._metrics.audit_entries_total.labels(mode="batched").inc(len(batch))
        logger.debug(f"Flushed {len(batch)} audit entries in {latency_ms:.2f}ms")
        return len(batch)

    async def close(self) -> None:
        """Flush remaining entries and stop the timer."""
        if self._queue:
            logger.info(f"Draining {len(self._queue)} queued audit entries")
            await self.flush()
        self._cancel_timer()
        if self._queue:
            logger.warning(f"{len(self._queue)} audit entries could not be written on shutdown")

    async def __aenter__(self) -> "AuditBatcher":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def get_metrics(self) -> dict[str, float | int]:
        """Get current counters as a dictionary."""
        return {
            "entries_immediate": self.stats.entries_immediate,
            "entries_batched": self.stats.entries_batched,
            "entries_dropped": self.stats.entries_dropped,
            "batches_flushed": self.stats.batches_flushed,
            "flush_errors": self.stats.flush_errors,
            "queue_length": len(self._queue),
            "last_flush_time": self.stats.last_flush_time,
        }

    def _arm_timer(self) -> None:
        if not self.timer_armed:
            self._timer = self.scheduler.after(self.flush_interval, self._on_timer)

    def _on_timer(self) -> Awaitable[int]:
        self._timer = None
        return self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
