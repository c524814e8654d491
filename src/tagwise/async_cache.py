"""Async tag-aware cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from types import TracebackType

from tagwise.adapters.base import (
    AsyncPruneableAdapter,
    AsyncResettableAdapter,
    AsyncStorageAdapter,
)
from tagwise.cache import _BaseCache
from tagwise.duration import duration_seconds
from tagwise.item import CacheItem
from tagwise.types import CacheEntry, Duration
from tagwise.versions import MAX_KNOWN_TAG_VERSIONS, AsyncTagVersionResolver

logger = logging.getLogger(__name__)


class AsyncTagAwareCache(_BaseCache):
    """Async counterpart of :class:`tagwise.cache.TagAwareCache`.

    Use it as an async context manager, or call :meth:`aclose`, so that
    deferred writes are committed before the cache goes away.
    """

    def __init__(
        self,
        items: AsyncStorageAdapter,
        tags: AsyncStorageAdapter | None = None,
        *,
        known_tag_versions_ttl: Duration = "150ms",
        max_known_tag_versions: int = MAX_KNOWN_TAG_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._items = items
        self._tags = tags if tags is not None else items
        self._deferred: dict[str, CacheItem] = {}
        self._resolver = AsyncTagVersionResolver(
            self._tags,
            ttl=duration_seconds(known_tag_versions_ttl),
            max_known=max_known_tag_versions,
            clock=clock,
        )

    async def get_item(self, key: str) -> CacheItem:
        """Get one item; check ``is_hit`` to know if it was found."""
        (item,) = await self.get_items([key])
        return item

    async def has_item(self, key: str) -> bool:
        return (await self.get_item(key)).is_hit

    async def get_items(self, keys: Iterable[str]) -> list[CacheItem]:
        """Get items by key, in order. Invalidated items are misses."""
        keys = list(dict.fromkeys(keys))
        if self._has_deferred(keys):
            await self.commit()

        entries = await self._items.get_many(keys)
        tags_by_key = {key: entry.tags for key, entry in entries.items() if entry.tags}
        versions = await self._resolver.resolve(tags_by_key, persist=False)
        return list(self._build_items(keys, entries, versions))

    async def save(self, item: CacheItem) -> bool:
        """Save an item right away."""
        if not self._buffer(item):
            return False
        return await self.commit()

    async def save_deferred(self, item: CacheItem) -> bool:
        """Buffer an item until the next commit. Never touches the adapter."""
        return self._buffer(item)

    async def commit(self) -> bool:
        """Write all buffered items with the current versions of their tags."""
        if not self._deferred:
            return True

        items = dict(self._deferred)
        versions = await self._resolver.resolve(
            {key: item._pending_tags() for key, item in items.items()}, persist=True
        )

        ok = True
        written: dict[str, CacheEntry] = {}
        for key, item in items.items():
            entry = item._to_entry(versions)
            if await self._items.save_deferred(key, entry):
                del self._deferred[key]
                written[key] = entry
            else:
                ok = False
        flushed = await self._items.commit()

        if flushed:
            for key, entry in written.items():
                items[key]._finalize_tags(entry.tags)
        ok = flushed and ok
        if not ok:
            logger.warning("Failed to commit %d cache items", len(items))
        return ok

    async def delete_item(self, key: str) -> bool:
        return await self.delete_items([key])

    async def delete_items(self, keys: Iterable[str]) -> bool:
        """Delete items by key, buffered writes included."""
        keys = list(keys)
        for key in keys:
            self._deferred.pop(key, None)
        return await self._items.delete_many(keys)

    async def invalidate_tags(self, tags: str | Iterable[str]) -> bool:
        """Invalidate every item tagged with any of ``tags``."""
        record_keys = self._tag_record_keys(tags)
        if not record_keys:
            return True
        for tag in record_keys.values():
            self._resolver.forget(tag)
        logger.debug("Invalidating tags: %s", ", ".join(record_keys.values()))
        return await self._tags.delete_many(list(record_keys))

    async def clear(self, prefix: str = "") -> bool:
        """Delete items (and buffered writes) whose key starts with ``prefix``."""
        self._drop_deferred(prefix)
        return await self._items.clear(prefix)

    async def prune(self) -> bool:
        """Remove expired items, if the items adapter supports it."""
        if isinstance(self._items, AsyncPruneableAdapter):
            return await self._items.prune()
        return False

    async def reset(self) -> None:
        """Commit pending writes and forget all known tag versions."""
        await self.commit()
        self._resolver.reset()
        if isinstance(self._items, AsyncResettableAdapter):
            await self._items.reset()
        if self._tags is not self._items and isinstance(
            self._tags, AsyncResettableAdapter
        ):
            await self._tags.reset()

    async def aclose(self) -> None:
        """Commit pending writes."""
        await self.commit()

    async def __aenter__(self) -> AsyncTagAwareCache:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __del__(self) -> None:
        # Nothing can be awaited here; report what is being lost
        pending = getattr(self, "_deferred", None)
        if pending:
            logger.warning(
                "AsyncTagAwareCache dropped %d uncommitted items: %s",
                len(pending),
                ", ".join(pending),
            )
