"""In-process change notifications.

Stores without a native change feed publish a ChangeEvent per written row
through a ChangeNotifier after the write commits. Subscribers choose a
resource, an event type ("INSERT", "UPDATE", "DELETE" or "*") and optionally a
filter evaluated against the row (the previous row image for deletes).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from farmsync.events.schemas import ChangeEvent, ChangeOperation
from farmsync.store.base import ANY_EVENT, ChangeHandler, SubscriptionHandle
from farmsync.store.filters import Filter, matches

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Subscription:
    handle: SubscriptionHandle
    filter_expr: Filter | None
    on_event: ChangeHandler


def _event_type(event_type: str) -> str:
    normalized = event_type.strip().upper()
    if normalized != ANY_EVENT and normalized not in ChangeOperation.__members__:
        raise ValueError(f"Unsupported event type: {event_type!r}")
    return normalized


class ChangeNotifier:
    """Fan-out of row change events to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: defaultdict[str, dict[str, _Subscription]] = defaultdict(dict)

    def subscribe(
        self,
        resource: str,
        event_type: str,
        filter_expr: Filter | None,
        on_event: ChangeHandler,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(resource=resource, event_type=_event_type(event_type))
        self._subscriptions[resource][handle.handle_id] = _Subscription(
            handle=handle, filter_expr=filter_expr, on_event=on_event
        )
        logger.debug(f"Subscribed to {handle.event_type} changes on {resource}")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        subscriptions = self._subscriptions.get(handle.resource)
        if subscriptions is None:
            return
        subscriptions.pop(handle.handle_id, None)
        if not subscriptions:
            del self._subscriptions[handle.resource]

    def subscription_count(self, resource: str | None = None) -> int:
        if resource is not None:
            return len(self._subscriptions.get(resource, {}))
        return sum(len(subs) for subs in self._subscriptions.values())

    def emit(
        self,
        resource: str,
        operation: ChangeOperation,
        record: Mapping[str, Any] | None = None,
        old_record: Mapping[str, Any] | None = None,
    ) -> int:
        """Deliver one change to matching subscribers; returns deliveries made."""
        subscriptions = list(self._subscriptions.get(resource, {}).values())
        if not subscriptions:
            return 0

        event = ChangeEvent(
            resource=resource,
            operation=operation,
            record=dict(record or {}),
            old_record=dict(old_record or {}),
        )
        row = event.old_record if operation is ChangeOperation.DELETE else event.record

        delivered = 0
        for sub in subscriptions:
            if sub.handle.event_type not in (ANY_EVENT, operation.value):
                continue
            if sub.filter_expr is not None and not matches(sub.filter_expr, row):
                continue
            try:
                sub.on_event(event)
                delivered += 1
            except Exception:
                logger.exception(f"Change subscriber failed for {resource}")
        return delivered
