"""Response cache layer for farmsync.

Provides the read path of the sync core:
- Deterministic cache keys built from resource, columns, filters and options
- In-process TTL + FIFO cache with targeted invalidation
- Request deduplication so concurrent identical reads share one fetch
- A single invalidation router for local mutations and remote change batches
"""

from farmsync.cache.dedup import OperationKind, PendingRequest, RequestDeduplicator
from farmsync.cache.invalidation import (
    ALL_RESOURCES,
    InvalidationMessage,
    InvalidationRouter,
    InvalidationSource,
)
from farmsync.cache.keys import CacheKey
from farmsync.cache.store import MISS, CacheEntry, CacheStats, CacheStore

__all__ = [
    # Keys and storage
    "CacheKey",
    "CacheStore",
    "CacheEntry",
    "CacheStats",
    "MISS",
    # Deduplication
    "RequestDeduplicator",
    "OperationKind",
    "PendingRequest",
    # Invalidation
    "InvalidationRouter",
    "InvalidationMessage",
    "InvalidationSource",
    "ALL_RESOURCES",
]
