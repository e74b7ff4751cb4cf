"""Cache key schema for the response cache.

A key is (resource, operation, fingerprint). The fingerprint is the canonical
JSON of the requested columns, the normalized filter set and the normalized
options, serialized with sorted keys:

    chickens:select:{"columns":["*"],"filters":[["eq","status","\\"paid\\""]],"options":{...}}

Normalization sorts filters and option keys, so two logically identical
reads always map to the same key, and any difference in columns, filters or
options yields a different fingerprint.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import orjson

from farmsync.store.base import SelectOptions
from farmsync.store.filters import Filter, normalize_filters


def _normalize_columns(columns: str | Sequence[str]) -> list[str]:
    if isinstance(columns, str):
        parts = [c.strip() for c in columns.split(",")]
    else:
        parts = [c.strip() for c in columns]
    return sorted({c for c in parts if c}) or ["*"]


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Deterministic key for a read request."""

    resource: str
    operation: str
    fingerprint: str
    # Columns the request filtered or ordered on; derived from the fingerprint
    dependent_columns: frozenset[str] = field(default=frozenset(), compare=False)
    # Paged or counted results depend on rows outside the returned set
    paged: bool = field(default=False, compare=False)

    def __str__(self) -> str:
        return f"{self.resource}:{self.operation}:{self.fingerprint}"

    @classmethod
    def build(
        cls,
        resource: str,
        operation: str = "select",
        *,
        columns: str | Sequence[str] = "*",
        filters: Iterable[Filter] = (),
        options: SelectOptions | None = None,
    ) -> "CacheKey":
        """Build the key for a read request."""
        filters = list(filters)
        options = options or SelectOptions()
        payload = {
            "columns": _normalize_columns(columns),
            "filters": [list(f) for f in normalize_filters(filters)],
            "options": options.normalized(),
        }
        fingerprint = orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode()
        dependent = {f.column for f in filters} | {column for column, _ in options.order_by}
        return cls(
            resource=resource,
            operation=operation,
            fingerprint=fingerprint,
            dependent_columns=frozenset(dependent),
            paged=options.limit is not None or options.offset is not None or options.count,
        )

    @classmethod
    def parse(cls, key: str) -> dict[str, str] | None:
        """Split a rendered key into its components.

        Returns None if the key doesn't match the expected format.
        """
        parts = key.split(":", 2)
        if len(parts) < 3 or not parts[0] or not parts[1]:
            return None
        return {"resource": parts[0], "operation": parts[1], "fingerprint": parts[2]}
