"""Tests for cache key generation."""

import orjson

from farmsync.cache.keys import CacheKey
from farmsync.store.base import SelectOptions
from farmsync.store.filters import Equals, In, Range


class TestCacheKey:
    """Test cache key generation."""

    def test_key_format(self) -> None:
        """Rendered key is resource:operation:fingerprint."""
        key = CacheKey.build("feed_inventory")
        assert str(key).startswith("feed_inventory:select:")
        assert orjson.loads(key.fingerprint)["columns"] == ["*"]

    def test_filter_order_does_not_matter(self) -> None:
        """Logically identical reads produce equal keys."""
        a = Equals("status", "active")
        b = Range("quantity", lower=10)
        assert CacheKey.build("feed_inventory", filters=[a, b]) == CacheKey.build(
            "feed_inventory", filters=[b, a]
        )

    def test_column_order_does_not_matter(self) -> None:
        """Column lists are normalized."""
        assert CacheKey.build("chickens", columns="id, customer") == CacheKey.build(
            "chickens", columns=["customer", "id"]
        )

    def test_in_value_order_does_not_matter(self) -> None:
        assert CacheKey.build("chickens", filters=[In("id", ["1", "2"])]) == CacheKey.build(
            "chickens", filters=[In("id", ["2", "1"])]
        )

    def test_different_filters_differ(self) -> None:
        """Different reads never collide."""
        assert CacheKey.build("chickens", filters=[Equals("status", "paid")]) != CacheKey.build(
            "chickens", filters=[Equals("status", "pending")]
        )

    def test_different_resources_differ(self) -> None:
        assert CacheKey.build("chickens") != CacheKey.build("live_chickens")

    def test_options_are_part_of_key(self) -> None:
        """Paging and ordering produce distinct keys."""
        plain = CacheKey.build("transactions")
        paged = CacheKey.build("transactions", options=SelectOptions(limit=10))
        ordered = CacheKey.build("transactions", options=SelectOptions(order_by=(("date", False),)))
        assert len({plain, paged, ordered}) == 3

    def test_dependent_columns(self) -> None:
        """Filtered and ordered columns are tracked."""
        key = CacheKey.build(
            "chickens",
            filters=[Equals("status", "paid")],
            options=SelectOptions(order_by=(("date", True),)),
        )
        assert key.dependent_columns == frozenset({"status", "date"})

    def test_paged_flag(self) -> None:
        assert not CacheKey.build("chickens").paged
        assert CacheKey.build("chickens", options=SelectOptions(limit=5)).paged
        assert CacheKey.build("chickens", options=SelectOptions(offset=5)).paged
        assert CacheKey.build("chickens", options=SelectOptions(count=True)).paged

    def test_parse_valid_key(self) -> None:
        """Valid key is parsed correctly."""
        key = CacheKey.build("chickens")
        result = CacheKey.parse(str(key))
        assert result is not None
        assert result["resource"] == "chickens"
        assert result["operation"] == "select"
        assert result["fingerprint"] == key.fingerprint

    def test_parse_invalid_key_returns_none(self) -> None:
        """Invalid key returns None."""
        assert CacheKey.parse("invalid") is None
        assert CacheKey.parse(":select:x") is None
