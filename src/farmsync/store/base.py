"""Store contracts consumed by the sync core.

- RemoteStore: the relational backend (select/insert/update/delete plus
  change-notification subscriptions keyed by resource and event type)
- LocalStore: a string key/value store used as an offline fallback

The sync core only depends on these interfaces; `farmsync.store.sql` and
`farmsync.store.local` provide concrete implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from farmsync.store.filters import Filter

if TYPE_CHECKING:
    from farmsync.events.schemas import ChangeEvent

Row = dict[str, Any]

ChangeHandler = Callable[["ChangeEvent"], None]

# Event type accepted by subscribe(): "INSERT", "UPDATE", "DELETE" or "*"
ANY_EVENT = "*"


class StoreError(Exception):
    """Base exception for store errors."""

    pass


class UnknownResourceError(StoreError):
    """The resource is not known to the store."""

    pass


@dataclass(frozen=True, slots=True)
class SelectOptions:
    """Ordering and paging options for a select."""

    # (column, ascending) pairs, applied in order
    order_by: tuple[tuple[str, bool], ...] = ()
    limit: int | None = None
    offset: int | None = None
    # Request an exact count of matching rows (ignores limit/offset)
    count: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_by", tuple((c, bool(a)) for c, a in self.order_by))

    def normalized(self) -> dict[str, Any]:
        """Options as a plain mapping for cache key fingerprints."""
        return {
            "order_by": [list(pair) for pair in self.order_by],
            "limit": self.limit,
            "offset": self.offset,
            "count": self.count,
        }


@dataclass(frozen=True, slots=True)
class SelectResult:
    """Rows returned by a select, with the optional exact count."""

    rows: tuple[Row, ...] = ()
    count: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rows", tuple(self.rows))

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    """Opaque handle returned by RemoteStore.subscribe()."""

    resource: str
    event_type: str
    handle_id: str = field(default_factory=lambda: str(uuid4()))


class RemoteStore(ABC):
    """Abstract remote relational store."""

    @abstractmethod
    async def select(
        self,
        resource: str,
        columns: str | Sequence[str] = "*",
        filters: Iterable[Filter] = (),
        options: SelectOptions | None = None,
    ) -> SelectResult:
        """Read rows matching every filter."""
        pass

    @abstractmethod
    async def insert(self, resource: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        """Insert rows and return them as stored."""
        pass

    @abstractmethod
    async def update(
        self,
        resource: str,
        patch: Mapping[str, Any],
        filters: Iterable[Filter],
    ) -> list[Row]:
        """Apply a patch to matching rows and return the updated rows."""
        pass

    @abstractmethod
    async def delete(self, resource: str, filters: Iterable[Filter]) -> list[Row]:
        """Delete matching rows and return the deleted rows."""
        pass

    @abstractmethod
    def subscribe(
        self,
        resource: str,
        event_type: str,
        filter_expr: Filter | None,
        on_event: ChangeHandler,
    ) -> SubscriptionHandle:
        """Register a change handler for a resource."""
        pass

    @abstractmethod
    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a change handler."""
        pass


class LocalStore(ABC):
    """Abstract local key/value store holding serialized strings."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the stored string or None."""
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a string under key (last write wins)."""
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove key if present."""
        pass
