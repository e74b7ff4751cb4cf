"""Tests for the in-process cache store."""

import pytest

from farmsync.cache.keys import CacheKey
from farmsync.cache.store import MISS, CacheStore, extract_record_ids
from farmsync.events.scheduler import ManualScheduler
from farmsync.observability.metrics import MetricsRegistry
from farmsync.store.base import SelectOptions, SelectResult
from farmsync.store.filters import Equals


def rows(*ids: str) -> SelectResult:
    return SelectResult(rows=[{"id": i, "status": "active"} for i in ids])


class TestGetSet:
    """Test basic reads and writes."""

    def test_miss_on_empty(self, cache: CacheStore) -> None:
        assert cache.get(CacheKey.build("chickens")) is MISS

    def test_miss_sentinel_is_falsy(self) -> None:
        assert not MISS
        assert repr(MISS) == "MISS"

    def test_set_then_get(self, cache: CacheStore) -> None:
        key = CacheKey.build("chickens")
        cache.set(key, rows("1"))
        assert cache.get(key) == rows("1")
        assert key in cache
        assert len(cache) == 1

    def test_cached_falsy_values_are_hits(self, cache: CacheStore) -> None:
        """An empty result is a value, not a miss."""
        key = CacheKey.build("chickens")
        cache.set(key, SelectResult())
        assert cache.get(key) == SelectResult()

    def test_stats(self, cache: CacheStore) -> None:
        key = CacheKey.build("chickens")
        cache.get(key)
        cache.set(key, rows("1"))
        cache.get(key)
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.sets, stats.evictions) == (1, 1, 1, 0)

    def test_clear_resets_counters(self, cache: CacheStore) -> None:
        key = CacheKey.build("chickens")
        cache.set(key, rows("1"))
        cache.get(key)
        cache.clear()
        assert len(cache) == 0
        assert cache.stats().hits == 0

    def test_max_entries_validated(self) -> None:
        with pytest.raises(ValueError):
            CacheStore(max_entries=0, metrics=MetricsRegistry())


class TestExpiry:
    """Test lazy TTL expiry."""

    async def test_default_ttl(self, cache: CacheStore, scheduler: ManualScheduler) -> None:
        key = CacheKey.build("chickens")
        cache.set(key, rows("1"))

        await scheduler.advance(299.0)
        assert cache.get(key) is not MISS

        await scheduler.advance(1.0)
        assert cache.get(key) is MISS
        assert key not in cache
        assert cache.stats().evictions == 1

    async def test_resource_ttl(self, cache: CacheStore, scheduler: ManualScheduler) -> None:
        """audit_logs entries live 60s, site_settings 30 minutes."""
        audit = CacheKey.build("audit_logs")
        site = CacheKey.build("site_settings")
        cache.set(audit, rows("a"))
        cache.set(site, rows("s"))

        await scheduler.advance(60.0)
        assert cache.get(audit) is MISS
        assert cache.get(site) is not MISS

        await scheduler.advance(1740.0)
        assert cache.get(site) is MISS

    def test_ttl_lookup(self, cache: CacheStore) -> None:
        assert cache.ttl("audit_logs") == 60.0
        assert cache.ttl("feed_inventory") == 300.0

    async def test_replacement_restarts_ttl(
        self, cache: CacheStore, scheduler: ManualScheduler
    ) -> None:
        key = CacheKey.build("chickens")
        cache.set(key, rows("1"))
        await scheduler.advance(200.0)
        cache.set(key, rows("2"))
        await scheduler.advance(200.0)
        assert cache.get(key) == rows("2")


class TestEviction:
    """Test FIFO capacity eviction."""

    @pytest.fixture
    def small_cache(self, scheduler: ManualScheduler, metrics: MetricsRegistry) -> CacheStore:
        return CacheStore(max_entries=3, clock=scheduler.now, metrics=metrics)

    def test_size_never_exceeds_capacity(self, small_cache: CacheStore) -> None:
        for i in range(10):
            key = CacheKey.build("chickens", filters=[Equals("id", str(i))])
            small_cache.set(key, rows(str(i)))
            assert len(small_cache) <= 3
        assert small_cache.stats().evictions == 7

    def test_oldest_inserted_is_evicted(self, small_cache: CacheStore) -> None:
        keys = [CacheKey.build("chickens", filters=[Equals("id", str(i))]) for i in range(4)]
        for i, key in enumerate(keys[:3]):
            small_cache.set(key, rows(str(i)))

        # Reads don't affect FIFO order
        small_cache.get(keys[0])
        small_cache.set(keys[3], rows("3"))

        assert keys[0] not in small_cache
        assert small_cache.keys() == keys[1:]

    def test_replacement_never_evicts(self, small_cache: CacheStore) -> None:
        keys = [CacheKey.build("chickens", filters=[Equals("id", str(i))]) for i in range(3)]
        for i, key in enumerate(keys):
            small_cache.set(key, rows(str(i)))

        small_cache.set(keys[1], rows("replaced"))

        assert len(small_cache) == 3
        assert small_cache.stats().evictions == 0


class TestInvalidation:
    """Test whole-resource and targeted invalidation."""

    def test_whole_resource(self, cache: CacheStore) -> None:
        cache.set(CacheKey.build("chickens"), rows("1"))
        cache.set(CacheKey.build("chickens", filters=[Equals("status", "paid")]), rows("2"))
        cache.set(CacheKey.build("feed_inventory"), rows("f"))

        assert cache.invalidate("chickens") == 2
        assert len(cache) == 1

    def test_by_record_ids(self, cache: CacheStore) -> None:
        """Only entries containing the ids are dropped."""
        hit = CacheKey.build("chickens", filters=[Equals("batch_id", "b1")])
        other = CacheKey.build("chickens", filters=[Equals("batch_id", "b2")])
        cache.set(hit, rows("1", "2"))
        cache.set(other, rows("3"))

        assert cache.invalidate("chickens", ["2"]) == 1
        assert hit not in cache
        assert other in cache

    def test_unknown_membership_is_dropped(self, cache: CacheStore) -> None:
        """Values without identifiable rows are always dropped."""
        key = CacheKey.build("balance", "summary")
        cache.set(key, {"total": 10})
        cache.invalidate("balance", ["1"])
        assert key not in cache

    def test_dependent_columns_are_dropped(self, cache: CacheStore) -> None:
        """A filter on a changed column may now match other rows."""
        paid = CacheKey.build("chickens", filters=[Equals("status", "paid")])
        by_batch = CacheKey.build("chickens", filters=[Equals("batch_id", "b1")])
        cache.set(paid, rows("1"))
        cache.set(by_batch, rows("1"))

        removed = cache.invalidate("chickens", ["99"], columns=["status"])

        assert removed == 1
        assert paid not in cache
        assert by_batch in cache

    def test_paged_results_are_dropped(self, cache: CacheStore) -> None:
        """Paged and counted reads depend on rows they don't contain."""
        page = CacheKey.build("transactions", options=SelectOptions(limit=2))
        cache.set(page, rows("1", "2"))
        cache.invalidate("transactions", ["3"])
        assert page not in cache

    def test_generation_bumps(self, cache: CacheStore) -> None:
        assert cache.generation("chickens") == 0
        cache.invalidate("chickens")
        cache.invalidate("chickens", ["1"])
        assert cache.generation("chickens") == 2
        assert cache.generation("feed_inventory") == 0

    def test_invalidate_all(self, cache: CacheStore) -> None:
        cache.set(CacheKey.build("chickens"), rows("1"))
        cache.set(CacheKey.build("feed_inventory"), rows("f"))
        assert cache.invalidate_all() == 2
        assert len(cache) == 0
        assert cache.generation("chickens") == 1

    def test_invalidate_all_bumps_every_generation(self, cache: CacheStore) -> None:
        """Resources without resident entries see the drop too."""
        cache.invalidate_all()
        assert cache.generation("transactions") == 1
        cache.invalidate("transactions")
        assert cache.generation("transactions") == 2


class TestExtractRecordIds:
    """Test record id extraction from cached values."""

    def test_select_result(self) -> None:
        assert extract_record_ids(rows("1", "2")) == frozenset({"1", "2"})

    def test_single_row(self) -> None:
        assert extract_record_ids({"id": 7}) == frozenset({"7"})

    def test_row_without_id(self) -> None:
        assert extract_record_ids([{"id": "1"}, {"name": "x"}]) is None

    def test_scalar(self) -> None:
        assert extract_record_ids(42) is None

    def test_custom_id_field(self) -> None:
        assert extract_record_ids([{"batch_id": "b"}], "batch_id") == frozenset({"b"})
