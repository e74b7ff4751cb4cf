"""Store layer for farmsync.

- RemoteStore / LocalStore contracts consumed by the sync core
- Filter variants shared by queries, cache keys and subscriptions
- SQLAlchemy async adapter with in-process change notifications
- Memory and file-backed local stores for offline fallback
"""

from farmsync.store.base import (
    LocalStore,
    RemoteStore,
    SelectOptions,
    SelectResult,
    StoreError,
    SubscriptionHandle,
    UnknownResourceError,
)
from farmsync.store.filters import Equals, Filter, In, Pattern, Range
from farmsync.store.local import FileLocalStore, MemoryLocalStore
from farmsync.store.notifier import ChangeNotifier
from farmsync.store.sql import SqlRemoteStore
from farmsync.store.tables import farm_metadata

__all__ = [
    # Contracts
    "RemoteStore",
    "LocalStore",
    "SelectOptions",
    "SelectResult",
    "SubscriptionHandle",
    "StoreError",
    "UnknownResourceError",
    # Filters
    "Filter",
    "Equals",
    "In",
    "Range",
    "Pattern",
    # Implementations
    "SqlRemoteStore",
    "ChangeNotifier",
    "MemoryLocalStore",
    "FileLocalStore",
    "farm_metadata",
]
