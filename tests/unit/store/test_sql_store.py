"""Tests for the SQLAlchemy remote store on in-memory SQLite."""

from collections.abc import AsyncIterator

import orjson
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from farmsync.events.schemas import ChangeEvent, ChangeOperation
from farmsync.store.base import SelectOptions, StoreError, UnknownResourceError
from farmsync.store.filters import Equals, In, Pattern, Range
from farmsync.store.sql import SqlRemoteStore


def feed(id: str, feed_type: str, remaining: float, status: str = "active") -> dict:
    return {"id": id, "feed_type": feed_type, "remaining_kg": remaining, "status": status}


@pytest.fixture
async def store() -> AsyncIterator[SqlRemoteStore]:
    """Fresh in-memory database shared by every connection."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    remote = SqlRemoteStore(engine)
    await remote.create_all()
    yield remote
    await remote.dispose()


@pytest.fixture
async def stocked(store: SqlRemoteStore) -> SqlRemoteStore:
    await store.insert(
        "feed_inventory",
        [
            feed("f1", "Starter Mash", 50.0),
            feed("f2", "Grower Pellets", 10.0),
            feed("f3", "Layer Mash", 0.0, status="depleted"),
        ],
    )
    return store


class TestSelect:
    """Test reads."""

    async def test_select_all(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory")
        assert {row["id"] for row in result.rows} == {"f1", "f2", "f3"}
        assert result.count is None

    async def test_equals(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory", filters=[Equals("status", "active")])
        assert {row["id"] for row in result.rows} == {"f1", "f2"}

    async def test_equals_none_is_null(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory", filters=[Equals("brand", None)])
        assert len(result) == 3

    async def test_in(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory", filters=[In("id", ["f1", "f3"])])
        assert {row["id"] for row in result.rows} == {"f1", "f3"}

    async def test_range(self, stocked: SqlRemoteStore) -> None:
        inclusive = await stocked.select(
            "feed_inventory", filters=[Range("remaining_kg", lower=10.0)]
        )
        strict = await stocked.select(
            "feed_inventory", filters=[Range("remaining_kg", lower=10.0, inclusive=False)]
        )
        assert {row["id"] for row in inclusive.rows} == {"f1", "f2"}
        assert {row["id"] for row in strict.rows} == {"f1"}

    async def test_pattern(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory", filters=[Pattern("feed_type", "%mash")])
        assert {row["id"] for row in result.rows} == {"f1", "f3"}

    async def test_columns(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select("feed_inventory", "id, status")
        assert set(result.rows[0]) == {"id", "status"}

    async def test_order_limit_offset_count(self, stocked: SqlRemoteStore) -> None:
        result = await stocked.select(
            "feed_inventory",
            options=SelectOptions(
                order_by=(("remaining_kg", False),), limit=1, offset=1, count=True
            ),
        )
        assert [row["id"] for row in result.rows] == ["f2"]
        assert result.count == 3

    async def test_row_keys_are_plain_str(self, stocked: SqlRemoteStore) -> None:
        """Rows serialize with orjson, which only accepts exact str keys."""
        result = await stocked.select("feed_inventory")
        assert all(type(name) is str for row in result.rows for name in row)
        assert orjson.loads(orjson.dumps(result.rows))[0]["id"] in {"f1", "f2", "f3"}

    async def test_unknown_resource(self, store: SqlRemoteStore) -> None:
        with pytest.raises(UnknownResourceError):
            await store.select("eggs")

    async def test_unknown_column(self, store: SqlRemoteStore) -> None:
        with pytest.raises(StoreError):
            await store.select("feed_inventory", filters=[Equals("colour", "red")])


class TestWrites:
    """Test inserts, updates and deletes."""

    async def test_insert_returns_stored_rows(self, store: SqlRemoteStore) -> None:
        rows = await store.insert("feed_inventory", [feed("f9", "Finisher", 25.0)])
        assert rows[0]["id"] == "f9"
        assert rows[0]["number_of_bags"] == 0

    async def test_insert_requires_id(self, store: SqlRemoteStore) -> None:
        with pytest.raises(StoreError):
            await store.insert("feed_inventory", [{"feed_type": "Finisher"}])

    async def test_insert_nothing(self, store: SqlRemoteStore) -> None:
        assert await store.insert("feed_inventory", []) == []

    async def test_update(self, stocked: SqlRemoteStore) -> None:
        rows = await stocked.update(
            "feed_inventory", {"status": "low"}, [Range("remaining_kg", upper=10.0)]
        )
        assert {row["id"] for row in rows} == {"f2", "f3"}
        assert all(row["status"] == "low" for row in rows)

    async def test_update_moving_primary_key(self, stocked: SqlRemoteStore) -> None:
        events: list[ChangeEvent] = []
        stocked.subscribe("feed_inventory", "UPDATE", None, events.append)

        rows = await stocked.update("feed_inventory", {"id": "f9"}, [Equals("id", "f1")])

        assert [row["id"] for row in rows] == ["f9"]
        assert events[0].old_record["id"] == "f1"
        assert events[0].record["id"] == "f9"

    async def test_update_no_match(self, stocked: SqlRemoteStore) -> None:
        rows = await stocked.update("feed_inventory", {"status": "x"}, [Equals("id", "nope")])
        assert rows == []

    async def test_delete_returns_deleted_rows(self, stocked: SqlRemoteStore) -> None:
        rows = await stocked.delete("feed_inventory", [Equals("status", "depleted")])
        assert [row["id"] for row in rows] == ["f3"]
        remaining = await stocked.select("feed_inventory")
        assert len(remaining) == 2


class TestSubscriptions:
    """Test change notifications after committed writes."""

    async def test_events_per_written_row(self, store: SqlRemoteStore) -> None:
        events: list[ChangeEvent] = []
        store.subscribe("feed_inventory", "*", None, events.append)

        await store.insert("feed_inventory", [feed("f1", "Starter", 5.0)])
        await store.update("feed_inventory", {"remaining_kg": 4.0}, [Equals("id", "f1")])
        await store.delete("feed_inventory", [Equals("id", "f1")])

        assert [e.operation for e in events] == [
            ChangeOperation.INSERT,
            ChangeOperation.UPDATE,
            ChangeOperation.DELETE,
        ]
        assert events[1].old_record["remaining_kg"] == 5.0
        assert events[1].record["remaining_kg"] == 4.0
        assert events[2].record_id() == "f1"

    async def test_event_type_and_filter(self, store: SqlRemoteStore) -> None:
        events: list[ChangeEvent] = []
        store.subscribe("feed_inventory", "insert", Equals("status", "active"), events.append)

        await store.insert(
            "feed_inventory",
            [feed("f1", "Starter", 5.0), feed("f2", "Grower", 5.0, status="depleted")],
        )
        await store.delete("feed_inventory", [Equals("id", "f1")])

        assert [e.record["id"] for e in events] == ["f1"]

    async def test_unsubscribe(self, store: SqlRemoteStore) -> None:
        events: list[ChangeEvent] = []
        handle = store.subscribe("feed_inventory", "*", None, events.append)
        store.unsubscribe(handle)

        await store.insert("feed_inventory", [feed("f1", "Starter", 5.0)])
        assert events == []

    async def test_failing_subscriber_is_isolated(self, store: SqlRemoteStore) -> None:
        events: list[ChangeEvent] = []

        def broken(event: ChangeEvent) -> None:
            raise RuntimeError("subscriber failed")

        store.subscribe("feed_inventory", "*", None, broken)
        store.subscribe("feed_inventory", "*", None, events.append)

        rows = await store.insert("feed_inventory", [feed("f1", "Starter", 5.0)])

        assert len(rows) == 1
        assert len(events) == 1

    def test_subscribe_unknown_resource(self, store: SqlRemoteStore) -> None:
        with pytest.raises(UnknownResourceError):
            store.subscribe("eggs", "*", None, lambda e: None)

    def test_subscribe_bad_event_type(self, store: SqlRemoteStore) -> None:
        with pytest.raises(ValueError):
            store.subscribe("feed_inventory", "TRUNCATE", None, lambda e: None)
