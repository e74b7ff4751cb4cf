"""Change event schemas.

A ChangeEvent is one row-level notification from the remote store's
subscription primitive. Events are grouped per resource into a ChangeBatch
before delivery.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ChangeOperation(str, Enum):
    """Type of row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class BatchTrigger(str, Enum):
    """What caused a batch to be delivered."""

    CAP = "cap"
    TIMER = "timer"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Row change notification."""

    resource: str
    operation: ChangeOperation
    record: Mapping[str, Any] = field(default_factory=dict)
    # Previous row image; the only payload of a DELETE
    old_record: Mapping[str, Any] = field(default_factory=dict)
    received_at: float = field(default_factory=time.monotonic)

    def record_id(self, id_field: str = "id") -> Any:
        """Identifier of the changed row, if the payload carries it."""
        value = self.record.get(id_field)
        if value is None:
            value = self.old_record.get(id_field)
        return value


@dataclass(frozen=True, slots=True)
class ChangeBatch:
    """Events for one resource delivered together, in arrival order."""

    resource: str
    events: tuple[ChangeEvent, ...]
    events_by_type: dict[ChangeOperation, tuple[ChangeEvent, ...]]
    trigger: BatchTrigger
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_events(
        cls,
        resource: str,
        events: list[ChangeEvent],
        trigger: BatchTrigger,
    ) -> "ChangeBatch":
        """Partition events by operation, preserving order within each list."""
        by_type: dict[ChangeOperation, list[ChangeEvent]] = {op: [] for op in ChangeOperation}
        for event in events:
            by_type[event.operation].append(event)
        return cls(
            resource=resource,
            events=tuple(events),
            events_by_type={op: tuple(items) for op, items in by_type.items()},
            trigger=trigger,
        )

    @property
    def inserts(self) -> tuple[ChangeEvent, ...]:
        return self.events_by_type[ChangeOperation.INSERT]

    @property
    def updates(self) -> tuple[ChangeEvent, ...]:
        return self.events_by_type[ChangeOperation.UPDATE]

    @property
    def deletes(self) -> tuple[ChangeEvent, ...]:
        return self.events_by_type[ChangeOperation.DELETE]

    def __len__(self) -> int:
        return len(self.events)
