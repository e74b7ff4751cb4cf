"""Sync client facade.

Wires the response cache, request deduplicator, invalidation router,
subscription batcher and audit batcher around one RemoteStore:

    client = await create_sync_client("sqlite+aiosqlite:///./farm.db")

    active = await client.select("feed_inventory", filters={"status": "active"})
    await client.update("chickens", {"status": "paid"}, {"id": "42"})
    await client.audit.record(AuditAction.UPDATE, "chickens", "42", before, after)

    handle = client.watch("chickens")
    ...
    await client.close()

Reads go through the deduplicator and the cache. Writes go straight to the
remote store and, only once it confirms, through the invalidation router.
Changes made by other clients arrive through watch() subscriptions, are
batched per resource and routed to the same invalidation path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from farmsync.audit.batcher import AuditBatcher
from farmsync.audit.schemas import AuditEntry
from farmsync.cache.dedup import RequestDeduplicator
from farmsync.cache.invalidation import (
    InvalidationMessage,
    InvalidationRouter,
    InvalidationSource,
)
from farmsync.cache.keys import CacheKey
from farmsync.cache.store import CacheStore
from farmsync.config import Settings, settings as default_settings
from farmsync.events.batcher import SubscriptionBatcher
from farmsync.events.scheduler import AsyncioScheduler, Scheduler
from farmsync.observability.logging import configure_logging
from farmsync.observability.metrics import MetricsRegistry, get_metrics
from farmsync.store.base import (
    ANY_EVENT,
    RemoteStore,
    Row,
    SelectOptions,
    SelectResult,
    SubscriptionHandle,
)
from farmsync.store.filters import Equals, Filter, filters_from_mapping
from farmsync.store.sql import SqlRemoteStore

logger = logging.getLogger(__name__)

FilterArg = Iterable[Filter] | Mapping[str, Any]

DEFAULT_PAGE_SIZE = 20
DEFAULT_PAGE_ORDER: tuple[tuple[str, bool], ...] = (("created_at", False),)
# Pages past this one are never preloaded
PRELOAD_PAGE_LIMIT = 10


def _as_filters(filters: FilterArg) -> list[Filter]:
    if isinstance(filters, Mapping):
        return filters_from_mapping(filters)
    return list(filters)


@dataclass(frozen=True, slots=True)
class PageRequest:
    """One page to load with SyncClient.batch_load()."""

    resource: str
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    columns: str | Sequence[str] = "*"
    filters: FilterArg = ()
    order_by: Sequence[tuple[str, bool]] = DEFAULT_PAGE_ORDER


class SyncClient:
    """Client-side data synchronization core over a RemoteStore."""

    def __init__(
        self,
        remote: RemoteStore,
        *,
        cache: CacheStore,
        deduplicator: RequestDeduplicator,
        router: InvalidationRouter,
        scheduler: Scheduler,
        batcher: SubscriptionBatcher | None = None,
        audit: AuditBatcher | None = None,
        settings: Settings | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        self.remote = remote
        self.cache = cache
        self.deduplicator = deduplicator
        self.router = router
        self.scheduler = scheduler
        self.settings = settings or default_settings
        self.batcher = batcher or SubscriptionBatcher(
            router.on_change_batch,
            scheduler,
            window=self.settings.subscription_window,
            max_batch_size=self.settings.subscription_max_batch,
            metrics=metrics,
        )
        self.audit = audit or AuditBatcher(
            self._write_audit,
            scheduler,
            batch_size=self.settings.audit_batch_size,
            flush_interval=self.settings.audit_flush_interval,
            metrics=metrics,
        )
        self._handles: dict[str, SubscriptionHandle] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        remote: RemoteStore,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> "SyncClient":
        """Build a client with every component configured from settings."""
        settings = settings or default_settings
        scheduler = scheduler or AsyncioScheduler()
        metrics = metrics or get_metrics()

        cache = CacheStore(
            default_ttl=settings.cache_default_ttl,
            resource_ttls=settings.cache_resource_ttls,
            max_entries=settings.cache_max_entries,
            id_field=settings.record_id_field,
            clock=scheduler.now,
            metrics=metrics,
        )
        router = InvalidationRouter(cache, id_field=settings.record_id_field, metrics=metrics)
        return cls(
            remote,
            cache=cache,
            deduplicator=RequestDeduplicator(cache, metrics=metrics),
            router=router,
            scheduler=scheduler,
            settings=settings,
            metrics=metrics,
        )

    @property
    def id_field(self) -> str:
        return self.settings.record_id_field

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def select(
        self,
        resource: str,
        columns: str | Sequence[str] = "*",
        filters: FilterArg = (),
        options: SelectOptions | None = None,
        *,
        use_cache: bool = True,
    ) -> SelectResult:
        """Read rows, sharing concurrent identical reads and caching the result.

        Args:
            resource: Table name
            columns: "*", a comma-separated string or a sequence of names
            filters: Filter variants, or a {column: value} mapping
            options: Ordering, paging and count options
            use_cache: False reads straight from the remote store
        """
        filter_list = _as_filters(filters)
        if not use_cache:
            return await self.remote.select(resource, columns, filter_list, options)

        key = CacheKey.build(resource, columns=columns, filters=filter_list, options=options)
        return await self.deduplicator.execute(
            key,
            lambda: self.remote.select(resource, columns, filter_list, options),
        )

    async def get_by_id(self, resource: str, record_id: Any) -> Row | None:
        """Read one row by identifier, or None."""
        result = await self.select(resource, filters=[Equals(self.id_field, record_id)])
        return result.rows[0] if result.rows else None

    # -------------------------------------------------------------------------
    # Paged loads
    # -------------------------------------------------------------------------

    async def load_page(
        self,
        resource: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        columns: str | Sequence[str] = "*",
        filters: FilterArg = (),
        order_by: Sequence[tuple[str, bool]] = DEFAULT_PAGE_ORDER,
        *,
        use_cache: bool = True,
    ) -> SelectResult:
        """Read one 1-based page, newest first unless order_by says otherwise."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be at least 1")
        options = SelectOptions(
            order_by=tuple(order_by),
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return await self.select(resource, columns, filters, options, use_cache=use_cache)

    async def batch_load(
        self, requests: Iterable[PageRequest]
    ) -> list[SelectResult | BaseException]:
        """Load several pages concurrently.

        Results come back in request order; a failed load yields its exception
        in place of a result and doesn't affect the others.
        """
        return await asyncio.gather(
            *(
                self.load_page(
                    req.resource,
                    req.page,
                    req.page_size,
                    req.columns,
                    req.filters,
                    req.order_by,
                )
                for req in requests
            ),
            return_exceptions=True,
        )

    def preload_next_page(
        self,
        current_page: int,
        resource: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        columns: str | Sequence[str] = "*",
        filters: FilterArg = (),
        order_by: Sequence[tuple[str, bool]] = DEFAULT_PAGE_ORDER,
    ) -> asyncio.Task[SelectResult] | None:
        """Warm the cache with the page after current_page in the background.

        Only the first PRELOAD_PAGE_LIMIT pages are preloaded. Failures are
        logged at debug level and never reach the caller.
        """
        if current_page >= PRELOAD_PAGE_LIMIT:
            return None
        task = asyncio.ensure_future(
            self.load_page(resource, current_page + 1, page_size, columns, filters, order_by)
        )
        self._background.add(task)
        task.add_done_callback(self._preload_done)
        return task

    def _preload_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Background page preload failed: {task.exception()}")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, resource: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        """Insert rows; a new row may belong to any cached result of the resource."""
        stored = await self.remote.insert(resource, rows)
        self.router.on_mutation_success(resource)
        return stored

    async def update(
        self,
        resource: str,
        patch: Mapping[str, Any],
        filters: FilterArg,
    ) -> list[Row]:
        """Patch matching rows; invalidates by the updated ids and changed columns.

        A patch that changes the identifier invalidates the whole resource:
        cached results still hold the rows under their old ids.
        """
        updated = await self.remote.update(resource, patch, _as_filters(filters))
        if self.id_field in patch:
            self.router.on_mutation_success(resource)
        else:
            self.router.on_mutation_success(
                resource, self._row_ids(updated), columns=list(patch.keys())
            )
        return updated

    async def delete(self, resource: str, filters: FilterArg) -> list[Row]:
        """Delete matching rows; invalidates by the deleted ids."""
        deleted = await self.remote.delete(resource, _as_filters(filters))
        self.router.on_mutation_success(resource, self._row_ids(deleted))
        return deleted

    def record_local_write(
        self, resource: str, record_ids: Iterable[Any] | None = None
    ) -> InvalidationMessage:
        """Invalidate after a write that went to the local store only."""
        return self.router.on_mutation_success(
            resource, record_ids, source=InvalidationSource.RECONCILE
        )

    def _row_ids(self, rows: Sequence[Mapping[str, Any]]) -> list[Any] | None:
        # None (whole resource) when any row lacks its identifier
        ids = [row.get(self.id_field) for row in rows]
        if any(record_id is None for record_id in ids):
            return None
        return ids

    async def _write_audit(self, entries: list[AuditEntry]) -> list[Row]:
        return await self.insert(self.settings.audit_table, [e.to_row() for e in entries])

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def watch(
        self,
        resource: str,
        event_type: str = ANY_EVENT,
        filter_expr: Filter | None = None,
    ) -> SubscriptionHandle:
        """Invalidate on changes made by other clients to resource."""
        handle = self.remote.subscribe(resource, event_type, filter_expr, self.batcher.add)
        self._handles[handle.handle_id] = handle
        logger.info(f"Watching {handle.event_type} changes on {resource}")
        return handle

    def unwatch(self, handle: SubscriptionHandle) -> None:
        """Stop a watch() subscription. Unknown handles are ignored."""
        if self._handles.pop(handle.handle_id, None) is None:
            return
        self.remote.unsubscribe(handle)
        self.batcher.flush(handle.resource)

    @property
    def watched(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Unsubscribe, deliver pending change batches and drain audit and preloads."""
        if self._closed:
            return
        self._closed = True

        for handle in list(self._handles.values()):
            self.remote.unsubscribe(handle)
        self._handles.clear()

        self.batcher.close()
        await self.audit.close()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.drain()
        logger.info("Sync client closed")

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def create_sync_client(
    database_url: str | None = None,
    settings: Settings | None = None,
    **engine_kwargs: Any,
) -> SyncClient:
    """Create a client over a SqlRemoteStore, creating missing tables.

    Also configures application logging from settings.log_level and
    settings.log_json.
    """
    settings = settings or default_settings
    configure_logging(json_format=settings.log_json, level=settings.log_level)
    remote = SqlRemoteStore.from_url(database_url or settings.database_url, **engine_kwargs)
    await remote.create_all()
    url = remote.engine.url.render_as_string(hide_password=True)
    logger.info(f"Sync client connected to {url}")
    return SyncClient.from_settings(remote, settings=settings)
