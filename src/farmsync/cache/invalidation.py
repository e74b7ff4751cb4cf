"""Cache invalidation routing.

Every path that can make cached data stale goes through one router:

- local mutations confirmed by the remote store (insert/update/delete)
- local fallback writes made during reconciliation
- change batches from real-time subscriptions (other clients' writes)

The router drops the affected cache entries and then notifies listeners, so
views can refresh without polling.

Example:
    router = InvalidationRouter(cache)
    router.register_invalidation_listener("chickens", on_chickens_changed)

    rows = await remote.update("chickens", {"status": "paid"}, [Equals("id", "42")])
    router.on_mutation_success("chickens", ["42"], columns=["status"])

Invalidating more than necessary only costs a refetch; leaving a stale entry
reachable after a known mutation is a bug.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from farmsync.cache.store import CacheStore
from farmsync.events.schemas import ChangeBatch
from farmsync.observability.metrics import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

# Listeners registered under this resource see every invalidation
ALL_RESOURCES = "*"


class InvalidationSource(str, Enum):
    """Origin of an invalidation."""

    LOCAL = "local"
    REMOTE = "remote"
    RECONCILE = "reconcile"


@dataclass(frozen=True, slots=True)
class InvalidationMessage:
    """What was invalidated, passed to listeners."""

    resource: str
    source: InvalidationSource
    # None means the whole resource
    record_ids: frozenset[str] | None = None
    columns: frozenset[str] = frozenset()
    removed: int = 0


InvalidationListener = Callable[[InvalidationMessage], None]


class InvalidationRouter:
    """Single entry point for cache invalidation."""

    def __init__(
        self,
        cache: CacheStore,
        *,
        id_field: str = "id",
        metrics: MetricsRegistry | None = None,
    ):
        self.cache = cache
        self.id_field = id_field
        self._metrics = metrics or get_metrics()
        self._listeners: defaultdict[str, list[InvalidationListener]] = defaultdict(list)

    def register_invalidation_listener(
        self, resource: str, callback: InvalidationListener
    ) -> None:
        """Call callback after every invalidation of resource ("*" for all)."""
        self._listeners[resource].append(callback)
        callback_name = getattr(callback, "__name__", callback.__class__.__name__)
        logger.debug(f"Registered invalidation listener {callback_name} for {resource}")

    on_invalidate = register_invalidation_listener

    def unregister_invalidation_listener(
        self, resource: str, callback: InvalidationListener
    ) -> bool:
        """Remove a listener. Returns False if it wasn't registered."""
        listeners = self._listeners.get(resource)
        if not listeners or callback not in listeners:
            return False
        listeners.remove(callback)
        if not listeners:
            del self._listeners[resource]
        return True

    def listener_count(self, resource: str) -> int:
        return len(self._listeners.get(resource, ()))

    def on_mutation_success(
        self,
        resource: str,
        record_ids: Iterable[object] | None = None,
        *,
        columns: Iterable[str] | None = None,
        source: InvalidationSource = InvalidationSource.LOCAL,
    ) -> InvalidationMessage:
        """Invalidate cache entries after a confirmed write, then notify.

        Args:
            resource: Resource that changed
            record_ids: Ids of the changed rows; None invalidates the resource
            columns: Columns the write changed (updates only)
            source: Where the change came from
        """
        ids = None if record_ids is None else frozenset(str(r) for r in record_ids)
        changed = frozenset(columns or ())

        removed = self.cache.invalidate(resource, ids, columns=changed)
        self._metrics.cache_invalidations_total.labels(
            resource=resource, source=source.value
        ).inc()

        message = InvalidationMessage(
            resource=resource,
            source=source,
            record_ids=ids,
            columns=changed,
            removed=removed,
        )
        self._notify(message)
        return message

    def on_change_batch(self, batch: ChangeBatch) -> InvalidationMessage:
        """Invalidate for a batch of externally originated changes.

        Inserts and updates may move rows into any cached result, so they
        invalidate the whole resource. A delete-only batch is scoped to the
        deleted ids when every event carries one.
        """
        if batch.inserts or batch.updates:
            return self.on_mutation_success(batch.resource, source=InvalidationSource.REMOTE)

        ids = [event.record_id(self.id_field) for event in batch.deletes]
        if any(record_id is None for record_id in ids):
            return self.on_mutation_success(batch.resource, source=InvalidationSource.REMOTE)
        return self.on_mutation_success(batch.resource, ids, source=InvalidationSource.REMOTE)

    def invalidate_all(self, source: InvalidationSource = InvalidationSource.LOCAL) -> int:
        """Drop the whole cache (nuclear option) and notify "*" listeners."""
        removed = self.cache.invalidate_all()
        self._notify(
            InvalidationMessage(resource=ALL_RESOURCES, source=source, removed=removed)
        )
        return removed

    def _notify(self, message: InvalidationMessage) -> None:
        listeners = list(self._listeners.get(message.resource, ()))
        if message.resource != ALL_RESOURCES:
            listeners.extend(self._listeners.get(ALL_RESOURCES, ()))

        for listener in listeners:
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Invalidation listener failed for {message.resource}: {e}")
