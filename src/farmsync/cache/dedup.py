"""Request deduplication for reads.

Concurrent identical reads share one underlying fetch:

    dedup = RequestDeduplicator(cache)
    key = CacheKey.build("feed_inventory", filters=[Equals("status", "active")])

    # Three callers, one fetch
    results = await asyncio.gather(*(dedup.execute(key, fetch) for _ in range(3)))

The pending-map lookup and registration happen synchronously, before the
first await, so no interleaving can start a second fetch for the same key.
A fetch result is only cached if no invalidation of its resource happened
while it was in flight; otherwise it may predate a mutation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from farmsync.cache.keys import CacheKey
from farmsync.cache.store import MISS, CacheStore
from farmsync.observability.metrics import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationKind(str, Enum):
    """Declared kind of a deduplicated operation."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """An in-flight fetch shared by every caller of the same key."""

    key: CacheKey
    task: asyncio.Task[Any]
    # Cache generation of the resource when the fetch started
    generation: int


class RequestDeduplicator:
    """Collapses concurrent identical reads into one call.

    Writes are never deduplicated: duplicate writes are not safe to merge.
    Callers can't cancel a shared fetch; a caller that stops awaiting leaves
    it running for the others.
    """

    def __init__(self, cache: CacheStore, metrics: MetricsRegistry | None = None):
        self.cache = cache
        self._metrics = metrics or get_metrics()
        self._pending: dict[CacheKey, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        """Number of fetches currently in flight."""
        return len(self._pending)

    def is_pending(self, key: CacheKey) -> bool:
        """True while a fetch for key is in flight."""
        return key in self._pending

    async def execute(
        self,
        key: CacheKey,
        producer: Callable[[], Awaitable[T]],
        *,
        kind: OperationKind = OperationKind.READ,
    ) -> T:
        """Run producer at most once per key among concurrent callers.

        Args:
            key: Cache key of the request
            producer: Zero-argument callable returning the fetch awaitable
            kind: READ results are shared and cached; WRITE runs directly

        Returns:
            The cached value, the shared fetch result, or the write result.
            Every caller joined to one fetch sees the same value or exception.
        """
        if kind is OperationKind.WRITE:
            return await producer()

        cached = self.cache.get(key)
        if cached is not MISS:
            return cached

        generation = self.cache.generation(key.resource)
        pending = self._pending.get(key)
        if pending is not None and pending.generation == generation:
            self._metrics.dedup_joined_total.labels(resource=key.resource).inc()
            logger.debug(f"Joined in-flight fetch for {key.resource}")
            return await asyncio.shield(pending.task)

        # A synchronous raise here propagates before anything is registered
        awaitable = producer()
        task = asyncio.ensure_future(self._fill(key, awaitable, generation))
        task.add_done_callback(_consume_result)
        self._pending[key] = PendingRequest(key=key, task=task, generation=generation)
        return await asyncio.shield(task)

    async def _fill(self, key: CacheKey, awaitable: Awaitable[T], generation: int) -> T:
        try:
            value = await awaitable
        finally:
            pending = self._pending.get(key)
            if pending is not None and pending.task is asyncio.current_task():
                del self._pending[key]

        if self.cache.generation(key.resource) == generation:
            self.cache.set(key, value)
        else:
            logger.debug(f"Skipped caching {key.resource} read invalidated while in flight")
        return value


def _consume_result(task: asyncio.Task[Any]) -> None:
    # Mark the exception retrieved when every caller stopped awaiting
    if not task.cancelled():
        task.exception()
