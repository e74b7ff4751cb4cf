"""SQL-backed remote store.

Implements the RemoteStore contract on SQLAlchemy 2.0 asyncio Core:

- Filter variants compile to WHERE clauses
- SelectOptions compile to ORDER BY / LIMIT / OFFSET, plus COUNT(*) on request
- Writes run in one transaction and return the affected rows
- Committed writes are published as ChangeEvents through a ChangeNotifier

Transport and integrity errors from the driver propagate unchanged.

Example:
    store = SqlRemoteStore.from_url("sqlite+aiosqlite:///./farm.db")
    await store.create_all()

    result = await store.select("feed_inventory", filters=[Equals("status", "active")])
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import (
    Column,
    ColumnElement,
    MetaData,
    Table,
    and_,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from farmsync.events.schemas import ChangeOperation
from farmsync.store.base import (
    ChangeHandler,
    RemoteStore,
    Row,
    SelectOptions,
    SelectResult,
    StoreError,
    SubscriptionHandle,
    UnknownResourceError,
)
from farmsync.store.filters import Equals, Filter, In, Pattern, Range
from farmsync.store.notifier import ChangeNotifier
from farmsync.store.tables import farm_metadata

logger = logging.getLogger(__name__)


def _plain(row: Mapping[Any, Any]) -> Row:
    # Result mappings are keyed by quoted_name, a str subclass orjson rejects
    return {str(name): value for name, value in row.items()}


class SqlRemoteStore(RemoteStore):
    """RemoteStore over an async SQLAlchemy engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        metadata: MetaData = farm_metadata,
        notifier: ChangeNotifier | None = None,
    ):
        self.engine = engine
        self.metadata = metadata
        self.notifier = notifier or ChangeNotifier()

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "SqlRemoteStore":
        """Create a store with its own engine."""
        return cls(create_async_engine(database_url, **engine_kwargs))

    async def create_all(self) -> None:
        """Create any missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)

    async def dispose(self) -> None:
        """Close pooled connections."""
        await self.engine.dispose()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def select(
        self,
        resource: str,
        columns: str | Sequence[str] = "*",
        filters: Iterable[Filter] = (),
        options: SelectOptions | None = None,
    ) -> SelectResult:
        table = self._table(resource)
        options = options or SelectOptions()
        clauses = self._where(table, filters)

        stmt = select(*self._columns(table, columns))
        if clauses:
            stmt = stmt.where(*clauses)
        for column_name, ascending in options.order_by:
            column = self._column(table, column_name)
            stmt = stmt.order_by(column.asc() if ascending else column.desc())
        if options.limit is not None:
            stmt = stmt.limit(options.limit)
        if options.offset is not None:
            stmt = stmt.offset(options.offset)

        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            rows = [_plain(row) for row in result.mappings()]

            count = None
            if options.count:
                count_stmt = select(func.count()).select_from(table)
                if clauses:
                    count_stmt = count_stmt.where(*clauses)
                count = (await conn.execute(count_stmt)).scalar_one()

        return SelectResult(rows=rows, count=count)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, resource: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        table = self._table(resource)
        payload = [dict(row) for row in rows]
        if not payload:
            return []
        pk = self._primary_key(table)
        for row in payload:
            self._check_columns(table, row)
            if row.get(pk.name) is None:
                raise StoreError(f"Rows inserted into {resource} need a {pk.name!r} value")

        async with self.engine.begin() as conn:
            # One statement per row so omitted columns get their defaults
            for row in payload:
                await conn.execute(insert(table).values(**row))
            ids = [row.get(pk.name) for row in payload]
            stored = await self._fetch_by_ids(conn, table, ids)

        for row in stored:
            self.notifier.emit(resource, ChangeOperation.INSERT, record=row)
        logger.debug(f"Inserted {len(stored)} rows into {resource}")
        return stored

    async def update(
        self,
        resource: str,
        patch: Mapping[str, Any],
        filters: Iterable[Filter],
    ) -> list[Row]:
        table = self._table(resource)
        values = dict(patch)
        self._check_columns(table, values)
        clauses = self._where(table, filters)
        pk = self._primary_key(table)

        async with self.engine.begin() as conn:
            stmt = select(table)
            if clauses:
                stmt = stmt.where(*clauses)
            before = [_plain(row) for row in (await conn.execute(stmt)).mappings()]
            ids = [row[pk.name] for row in before]
            if not ids:
                return []
            if not values:
                return before

            await conn.execute(update(table).where(pk.in_(ids)).values(**values))
            if pk.name in values:
                # The patch moved the primary key; the rows now live under the new id
                after = await self._fetch_by_ids(conn, table, [values[pk.name]])
            else:
                after = await self._fetch_by_ids(conn, table, ids)

        previous = {row[pk.name]: row for row in before}
        if pk.name in values and len(before) == 1:
            previous = {values[pk.name]: before[0]}
        for row in after:
            self.notifier.emit(
                resource,
                ChangeOperation.UPDATE,
                record=row,
                old_record=previous.get(row[pk.name]),
            )
        logger.debug(f"Updated {len(after)} rows in {resource}")
        return after

    async def delete(self, resource: str, filters: Iterable[Filter]) -> list[Row]:
        table = self._table(resource)
        clauses = self._where(table, filters)
        pk = self._primary_key(table)

        async with self.engine.begin() as conn:
            stmt = select(table)
            if clauses:
                stmt = stmt.where(*clauses)
            doomed = [_plain(row) for row in (await conn.execute(stmt)).mappings()]
            if not doomed:
                return []
            ids = [row[pk.name] for row in doomed]
            await conn.execute(delete(table).where(pk.in_(ids)))

        for row in doomed:
            self.notifier.emit(resource, ChangeOperation.DELETE, old_record=row)
        logger.debug(f"Deleted {len(doomed)} rows from {resource}")
        return doomed

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        resource: str,
        event_type: str,
        filter_expr: Filter | None,
        on_event: ChangeHandler,
    ) -> SubscriptionHandle:
        self._table(resource)
        return self.notifier.subscribe(resource, event_type, filter_expr, on_event)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.notifier.unsubscribe(handle)

    # -------------------------------------------------------------------------
    # Statement helpers
    # -------------------------------------------------------------------------

    def _table(self, resource: str) -> Table:
        table = self.metadata.tables.get(resource)
        if table is None:
            raise UnknownResourceError(f"Unknown resource: {resource}")
        return table

    @staticmethod
    def _column(table: Table, name: str) -> Column[Any]:
        if name not in table.c:
            raise StoreError(f"Unknown column {name!r} on {table.name}")
        return table.c[name]

    def _columns(self, table: Table, columns: str | Sequence[str]) -> list[Column[Any]]:
        names = columns.split(",") if isinstance(columns, str) else list(columns)
        names = [name.strip() for name in names if name.strip()]
        if not names or "*" in names:
            return list(table.c)
        return [self._column(table, name) for name in names]

    def _check_columns(self, table: Table, row: Mapping[str, Any]) -> None:
        for name in row:
            self._column(table, name)

    @staticmethod
    def _primary_key(table: Table) -> Column[Any]:
        pk_columns = list(table.primary_key.columns)
        if len(pk_columns) != 1:
            raise StoreError(f"{table.name} needs a single-column primary key")
        return pk_columns[0]

    def _where(self, table: Table, filters: Iterable[Filter]) -> list[ColumnElement[bool]]:
        return [self._compile(table, flt) for flt in filters]

    def _compile(self, table: Table, flt: Filter) -> ColumnElement[bool]:
        column = self._column(table, flt.column)

        if isinstance(flt, Equals):
            return column.is_(None) if flt.value is None else column == flt.value
        if isinstance(flt, In):
            return column.in_(list(flt.values))
        if isinstance(flt, Range):
            bounds = []
            if flt.lower is not None:
                bounds.append(column >= flt.lower if flt.inclusive else column > flt.lower)
            if flt.upper is not None:
                bounds.append(column <= flt.upper if flt.inclusive else column < flt.upper)
            return and_(*bounds)
        if isinstance(flt, Pattern):
            return column.like(flt.pattern) if flt.case_sensitive else column.ilike(flt.pattern)
        raise TypeError(f"Unsupported filter type: {type(flt).__name__}")

    async def _fetch_by_ids(
        self, conn: AsyncConnection, table: Table, ids: list[Any]
    ) -> list[Row]:
        pk = self._primary_key(table)
        result = await conn.execute(select(table).where(pk.in_(ids)))
        by_id = {row[pk.name]: _plain(row) for row in result.mappings()}
        return [by_id[i] for i in ids if i in by_id]
