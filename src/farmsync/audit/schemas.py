"""Audit log entry schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import orjson


class AuditAction(str, Enum):
    """Known audit actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    VIEW = "VIEW"
    SEARCH = "SEARCH"
    FILTER = "FILTER"
    EXPORT = "EXPORT"


# Written synchronously, before record() returns
CRITICAL_ACTIONS = frozenset(
    {AuditAction.CREATE, AuditAction.DELETE, AuditAction.LOGIN, AuditAction.LOGOUT}
)

# Never written unless forced
READ_ACTIONS = frozenset({AuditAction.VIEW, AuditAction.SEARCH, AuditAction.FILTER})


def normalize_action(action: AuditAction | str) -> str:
    """Upper-case action name; unknown actions are kept as given."""
    if isinstance(action, AuditAction):
        return action.value
    return str(action).strip().upper()


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return orjson.dumps(value, default=str).decode()


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """One audit log record."""

    actor_id: str
    action: str
    resource: str
    record_id: str | None
    before: Any = None
    after: Any = None
    id: str = field(default_factory=lambda: f"audit-{uuid4()}")
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_critical(self) -> bool:
        return self.action in CRITICAL_ACTIONS

    @property
    def is_read(self) -> bool:
        return self.action in READ_ACTIONS

    def to_row(self) -> dict[str, Any]:
        """Row for the audit_logs table; before/after serialized as JSON."""
        return {
            "id": self.id,
            "user_id": self.actor_id,
            "action": self.action,
            "table_name": self.resource,
            "record_id": self.record_id,
            "old_values": _dump(self.before),
            "new_values": _dump(self.after),
            "created_at": self.created_at,
        }
