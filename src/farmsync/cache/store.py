"""In-process response cache.

Entries expire lazily: `get` checks the entry age against the TTL for its
resource and drops stale entries on access. When the store is full, the
oldest-inserted entry is evicted (FIFO) to make room.

Each entry remembers which record ids its value contains, so an invalidation
scoped to specific records only drops the results that could have contained
them. Entries whose membership can't be determined are always dropped.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict, defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from farmsync.cache.keys import CacheKey
from farmsync.observability.metrics import MetricsRegistry, get_metrics
from farmsync.store.base import SelectResult

logger = logging.getLogger(__name__)

# Default TTL (5 minutes)
DEFAULT_TTL = 300.0
DEFAULT_MAX_ENTRIES = 500


class _Miss:
    """Sentinel type for cache misses."""

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value. Replaced whole, never mutated."""

    key: CacheKey
    value: Any
    stored_at: float
    resource: str
    # None when the value carries no identifiable rows
    record_ids: frozenset[str] | None
    dependent_columns: frozenset[str]
    paged: bool = False


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Cumulative cache counters."""

    hits: int
    misses: int
    sets: int
    evictions: int


def extract_record_ids(value: Any, id_field: str = "id") -> frozenset[str] | None:
    """Collect the identifier field of the rows in a cached value.

    Understands SelectResult, a single row dict and sequences of row dicts.
    Returns None when any row lacks the identifier or the value is not
    row-shaped.
    """
    if isinstance(value, SelectResult):
        rows: Iterable[Any] = value.rows
    elif isinstance(value, Mapping):
        rows = [value]
    elif isinstance(value, (list, tuple)):
        rows = value
    else:
        return None

    ids: set[str] = set()
    for row in rows:
        if not isinstance(row, Mapping) or row.get(id_field) is None:
            return None
        ids.add(str(row[id_field]))
    return frozenset(ids)


class CacheStore:
    """TTL + FIFO response cache keyed by CacheKey.

    Never raises for normal operation; everything here is in-memory
    bookkeeping.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL,
        resource_ttls: Mapping[str, float] | None = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        id_field: str = "id",
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.default_ttl = default_ttl
        self.resource_ttls = dict(resource_ttls or {})
        self.max_entries = max_entries
        self.id_field = id_field
        self._clock = clock
        self._metrics = metrics or get_metrics()

        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._generations: defaultdict[str, int] = defaultdict(int)
        # Bumped by invalidate_all, so resources with no resident entries see it too
        self._epoch = 0

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0

    def ttl(self, resource: str) -> float:
        """TTL in seconds for a resource."""
        return self.resource_ttls.get(resource, self.default_ttl)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[CacheKey]:
        """Resident keys, oldest first (expired entries included until touched)."""
        return list(self._entries)

    def get(self, key: CacheKey) -> Any:
        """Return the cached value, or MISS if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._record_miss(key.resource)
            return MISS

        if self._clock() - entry.stored_at >= self.ttl(entry.resource):
            del self._entries[key]
            self._evictions += 1
            self._metrics.cache_evictions_total.labels(
                resource=entry.resource, reason="ttl"
            ).inc()
            self._record_miss(key.resource)
            return MISS

        self._hits += 1
        self._metrics.cache_hits_total.labels(resource=entry.resource).inc()
        return entry.value

    def set(self, key: CacheKey, value: Any, resource: str | None = None) -> None:
        """Insert or replace an entry, evicting the oldest one when full."""
        resource = resource or key.resource

        if key in self._entries:
            # Replacement re-inserts at the tail and never evicts
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            oldest_key, oldest = self._entries.popitem(last=False)
            self._evictions += 1
            self._metrics.cache_evictions_total.labels(
                resource=oldest.resource, reason="capacity"
            ).inc()
            logger.debug(f"Evicted oldest cache entry {oldest_key}")

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            resource=resource,
            record_ids=extract_record_ids(value, self.id_field),
            dependent_columns=key.dependent_columns,
            paged=key.paged,
        )
        self._sets += 1

    def invalidate(
        self,
        resource: str,
        record_ids: Iterable[Any] | None = None,
        *,
        columns: Iterable[str] | None = None,
    ) -> int:
        """Remove entries for a resource and return how many were removed.

        Without record_ids every entry of the resource goes. With record_ids,
        an entry goes when its rows intersect the ids, when its rows are
        unknown or paged, or when it filtered/ordered on one of the changed
        columns.
        """
        self._generations[resource] += 1

        targets = None if record_ids is None else frozenset(str(r) for r in record_ids)
        changed = frozenset(columns or ())

        doomed = [
            key
            for key, entry in self._entries.items()
            if entry.resource == resource and self._affected(entry, targets, changed)
        ]
        for key in doomed:
            del self._entries[key]

        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries for {resource}")
        return len(doomed)

    def invalidate_all(self) -> int:
        """Remove every entry."""
        self._epoch += 1
        removed = len(self._entries)
        self._entries.clear()
        if removed:
            logger.info(f"Invalidated all {removed} cache entries")
        return removed

    def clear(self) -> None:
        """Remove every entry and reset the counters."""
        self.invalidate_all()
        self._hits = self._misses = self._sets = self._evictions = 0

    def generation(self, resource: str) -> int:
        """Counter bumped on every invalidation touching the resource."""
        return self._epoch + self._generations[resource]

    def stats(self) -> CacheStats:
        """Cumulative hit/miss/set/eviction counters."""
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            evictions=self._evictions,
        )

    @staticmethod
    def _affected(
        entry: CacheEntry,
        targets: frozenset[str] | None,
        changed: frozenset[str],
    ) -> bool:
        if targets is None or entry.record_ids is None or entry.paged:
            return True
        if entry.record_ids & targets:
            return True
        return bool(entry.dependent_columns & changed)

    def _record_miss(self, resource: str) -> None:
        self._misses += 1
        self._metrics.cache_misses_total.labels(resource=resource).inc()
