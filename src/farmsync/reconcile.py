"""Remote/local reconciliation for offline use.

Reads prefer the remote store. Non-empty, unfiltered remote results are
mirrored into the local store so they survive going offline; when the remote
read fails or comes back empty, the locally persisted copy is served instead.

Serving or writing local data goes through the client's invalidation path,
the same as a confirmed remote mutation, so cached remote results for the
resource can't shadow the local view.

Local values are stored as orjson-encoded row lists under "{prefix}{resource}".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import orjson

from farmsync.config import Settings
from farmsync.store.base import LocalStore, Row, SelectOptions
from farmsync.store.filters import Filter
from farmsync.store.local import FileLocalStore

if TYPE_CHECKING:
    from farmsync.client import SyncClient

logger = logging.getLogger(__name__)


class DataSource(str, Enum):
    """Where reconciled rows came from."""

    REMOTE = "remote"
    LOCAL = "local"
    EMPTY = "empty"


@dataclass(frozen=True, slots=True)
class ReconciledRows:
    """Rows returned by Reconciler.load()."""

    resource: str
    rows: tuple[Row, ...]
    source: DataSource

    def __len__(self) -> int:
        return len(self.rows)


class Reconciler:
    """Loads resources with a local fallback."""

    def __init__(self, client: SyncClient, local: LocalStore, key_prefix: str = ""):
        self.client = client
        self.local = local
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, client: SyncClient, settings: Settings | None = None) -> "Reconciler":
        """Reconciler persisting under settings.local_store_path."""
        settings = settings or client.settings
        return cls(client, FileLocalStore(settings.local_store_path))

    def local_key(self, resource: str) -> str:
        return f"{self.key_prefix}{resource}"

    async def load(
        self,
        resource: str,
        columns: str | Sequence[str] = "*",
        filters: Iterable[Filter] | Mapping[str, Any] = (),
        options: SelectOptions | None = None,
    ) -> ReconciledRows:
        """Load rows from the remote store, falling back to the local copy.

        Remote errors are logged and never raised; the local copy (or an
        empty result) is returned instead.
        """
        try:
            result = await self.client.select(resource, columns, filters, options)
        except Exception as e:
            logger.warning(f"Remote read of {resource} failed, using local data: {e}")
        else:
            if result.rows:
                # Only a full read may replace the local copy
                if columns == "*" and not filters and options is None:
                    try:
                        await self._write(resource, result.rows)
                    except Exception as e:
                        logger.error(f"Failed to mirror {resource} to the local store: {e}")
                return ReconciledRows(resource, result.rows, DataSource.REMOTE)

        rows = await self.read_local(resource)
        if rows:
            self.client.record_local_write(resource)
            return ReconciledRows(resource, tuple(rows), DataSource.LOCAL)
        return ReconciledRows(resource, (), DataSource.EMPTY)

    async def save_local(self, resource: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Persist rows locally and invalidate the resource's cached results."""
        await self._write(resource, rows)
        self.client.record_local_write(resource)

    async def read_local(self, resource: str) -> list[Row]:
        """Locally persisted rows; empty when missing or unreadable."""
        raw = await self.local.get_item(self.local_key(resource))
        if raw is None:
            return []
        try:
            rows = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.error(f"Discarding corrupt local data for {resource}: {e}")
            return []
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            logger.error(f"Discarding local data for {resource}: not a list of rows")
            return []
        return rows

    async def clear_local(self, resource: str) -> None:
        await self.local.remove_item(self.local_key(resource))

    async def _write(self, resource: str, rows: Sequence[Mapping[str, Any]]) -> None:
        payload = orjson.dumps([dict(row) for row in rows], default=str).decode()
        await self.local.set_item(self.local_key(resource), payload)
        logger.debug(f"Mirrored {len(rows)} {resource} rows to the local store")
