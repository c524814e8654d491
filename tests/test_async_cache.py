"""Tests for the async tag-aware cache."""

import logging
import pickle

import pytest

from tagwise import AsyncMemoryAdapter, AsyncTagAwareCache, CacheItem, InvalidArgumentError
from tagwise.types import tag_record_key

from .conftest import AsyncCountingAdapter, ManualClock


@pytest.fixture
def cache(
    async_adapter: AsyncMemoryAdapter,
    async_tags_adapter: AsyncCountingAdapter,
    clock: ManualClock,
) -> AsyncTagAwareCache:
    """Create an async cache with separate item and tag adapters."""
    return AsyncTagAwareCache(async_adapter, async_tags_adapter, clock=clock)


class TestAsyncReadAndWrite:
    """Tests for async reads and writes."""

    async def test_save_then_get(self, cache: AsyncTagAwareCache) -> None:
        """Test that a saved tagged item is a hit."""
        assert await cache.save(CacheItem("a").set([1, 2]).tag("cat"))

        item = await cache.get_item("a")
        assert item.is_hit
        assert item.get() == [1, 2]
        assert item.tags == frozenset({"cat"})
        assert await cache.has_item("a")

    async def test_get_items_returns_list(self, cache: AsyncTagAwareCache) -> None:
        """Test multi-key reads."""
        await cache.save(CacheItem("a").set(1))
        items = await cache.get_items(["a", "b"])
        assert [(i.key, i.is_hit) for i in items] == [("a", True), ("b", False)]

    async def test_read_your_writes(
        self, cache: AsyncTagAwareCache, async_adapter: AsyncMemoryAdapter
    ) -> None:
        """Test that reading a buffered key commits it first."""
        assert await cache.save_deferred(CacheItem("a").set(42).tag("t"))
        assert len(async_adapter) == 0

        item = await cache.get_item("a")
        assert item.is_hit
        assert item.get() == 42

    async def test_items_in_one_commit_share_versions(
        self,
        cache: AsyncTagAwareCache,
        async_adapter: AsyncMemoryAdapter,
    ) -> None:
        """Test that one commit mints one version per tag."""
        await cache.save_deferred(CacheItem("a").set(1).tag("x"))
        await cache.save_deferred(CacheItem("b").set(2).tag("x"))
        assert await cache.commit()

        entries = await async_adapter.get_many(["a", "b"])
        assert entries["a"].tags["x"] == entries["b"].tags["x"]

    async def test_invalid_key(self, cache: AsyncTagAwareCache) -> None:
        """Test that key errors name the caller's key."""
        with pytest.raises(InvalidArgumentError, match="'a/b'"):
            await cache.get_item("a/b")


class TestAsyncInvalidation:
    """Tests for async tag invalidation."""

    async def test_invalidation_scenario(
        self, cache: AsyncTagAwareCache, async_adapter: AsyncMemoryAdapter
    ) -> None:
        """Test invalidating a tag and writing under a new version."""
        await cache.save(CacheItem("A").set("a").tag("cat"))
        assert (await cache.get_item("A")).is_hit

        assert await cache.invalidate_tags(["cat"])
        assert not (await cache.get_item("A")).is_hit
        assert "A" in await async_adapter.get_many(["A"])

        await cache.save(CacheItem("B").set("b").tag("cat"))
        assert not (await cache.get_item("A")).is_hit
        assert (await cache.get_item("B")).is_hit

    async def test_invalidate_deletes_version_records(
        self, cache: AsyncTagAwareCache, async_tags_adapter: AsyncCountingAdapter
    ) -> None:
        """Test the records removed by an invalidation."""
        assert await cache.invalidate_tags([])
        assert async_tags_adapter.calls == []

        assert await cache.invalidate_tags(["x"])
        assert async_tags_adapter.calls == [("delete_many", [tag_record_key("x")])]

    async def test_invalidate_single_tag_name(
        self, cache: AsyncTagAwareCache, async_tags_adapter: AsyncCountingAdapter
    ) -> None:
        """Test that a bare string is one tag, not a sequence of characters."""
        assert await cache.invalidate_tags("cat")
        assert async_tags_adapter.calls == [("delete_many", [tag_record_key("cat")])]

    async def test_reads_use_known_versions_within_window(
        self,
        cache: AsyncTagAwareCache,
        async_tags_adapter: AsyncCountingAdapter,
        clock: ManualClock,
    ) -> None:
        """Test that repeated reads do not hit the tags adapter."""
        await cache.save(CacheItem("a").set(1).tag("t"))
        fetches = async_tags_adapter.count("get_many")

        assert (await cache.get_item("a")).is_hit
        assert async_tags_adapter.count("get_many") == fetches

        clock.advance(0.2)
        assert (await cache.get_item("a")).is_hit
        assert async_tags_adapter.count("get_many") == fetches + 1


class TestAsyncMaintenance:
    """Tests for async delete, clear, prune, reset and teardown."""

    async def test_delete_and_clear(self, cache: AsyncTagAwareCache) -> None:
        """Test deleting and clearing items."""
        await cache.save(CacheItem("user-1").set(1))
        await cache.save(CacheItem("user-2").set(2))
        await cache.save(CacheItem("post-1").set(3))

        assert await cache.delete_item("user-1")
        assert not (await cache.get_item("user-1")).is_hit

        await cache.save_deferred(CacheItem("user-3").set(4))
        assert await cache.clear("user-")
        items = await cache.get_items(["user-2", "user-3", "post-1"])
        assert [i.is_hit for i in items] == [False, False, True]

    async def test_prune(
        self, cache: AsyncTagAwareCache, async_tags_adapter: AsyncCountingAdapter
    ) -> None:
        """Test that pruning depends on adapter support."""
        assert await cache.prune() is True
        assert await AsyncTagAwareCache(async_tags_adapter).prune() is False

    async def test_reset(
        self, async_adapter: AsyncMemoryAdapter, clock: ManualClock
    ) -> None:
        """Test that reset commits, then resets the adapter."""
        cache = AsyncTagAwareCache(async_adapter, clock=clock)
        await cache.save_deferred(CacheItem("a").set(1))
        await cache.reset()
        assert len(async_adapter) == 0
        assert await cache.commit()

    async def test_context_manager_commits(
        self, async_adapter: AsyncMemoryAdapter
    ) -> None:
        """Test that leaving the block flushes deferred writes."""
        async with AsyncTagAwareCache(async_adapter) as cache:
            await cache.save_deferred(CacheItem("a").set(1).tag("t"))
        assert "a" in await async_adapter.get_many(["a"])

    async def test_dropping_pending_writes_is_logged(
        self, async_adapter: AsyncMemoryAdapter, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that uncommitted writes are reported on garbage collection."""
        cache = AsyncTagAwareCache(async_adapter)
        await cache.save_deferred(CacheItem("a").set(1))
        with caplog.at_level(logging.WARNING, logger="tagwise.async_cache"):
            del cache
        assert "dropped 1 uncommitted items: a" in caplog.text

    async def test_cannot_be_pickled(self, cache: AsyncTagAwareCache) -> None:
        """Test that the cache refuses serialization."""
        with pytest.raises(TypeError, match="Cannot serialize AsyncTagAwareCache"):
            pickle.dumps(cache)
