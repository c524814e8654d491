"""Sync tag-aware cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from types import TracebackType
from typing import Any

from tagwise.adapters.base import PruneableAdapter, ResettableAdapter, StorageAdapter
from tagwise.duration import duration_seconds
from tagwise.item import CacheItem, validate_key
from tagwise.types import CacheEntry, Duration, tag_record_key
from tagwise.versions import MAX_KNOWN_TAG_VERSIONS, TagVersionResolver

logger = logging.getLogger(__name__)


class _BaseCache:
    """Deferred-write buffer and helpers shared by the sync and async caches."""

    _deferred: dict[str, CacheItem]

    def _buffer(self, item: object) -> bool:
        if not isinstance(item, CacheItem):
            return False
        self._deferred[item.key] = item
        return True

    def _has_deferred(self, keys: Iterable[object]) -> bool:
        return any(isinstance(key, str) and key in self._deferred for key in keys)

    def _drop_deferred(self, prefix: str) -> None:
        if not prefix:
            self._deferred.clear()
            return
        for key in [k for k in self._deferred if k.startswith(prefix)]:
            del self._deferred[key]

    @staticmethod
    def _tag_record_keys(tags: str | Iterable[str]) -> dict[str, str]:
        if isinstance(tags, str):
            tags = [tags]
        return {tag_record_key(validate_key(tag)): tag for tag in tags}

    @staticmethod
    def _build_items(
        keys: Iterable[str],
        entries: Mapping[str, CacheEntry],
        versions: Mapping[str, str],
    ) -> Iterator[CacheItem]:
        for key in keys:
            item = CacheItem(key)
            entry = entries.get(key)
            if entry is not None and all(
                versions.get(tag) == version for tag, version in entry.tags.items()
            ):
                item._mark_hit(entry)
            yield item

    def __getstate__(self) -> Any:
        raise TypeError(f"Cannot serialize {type(self).__name__}")

    def __setstate__(self, state: Any) -> None:
        raise TypeError(f"Cannot unserialize {type(self).__name__}")


class TagAwareCache(_BaseCache):
    """Tag-based invalidation on top of any sync storage adapter.

    Items are stored together with the current version of each of their
    tags. Reading an item compares those versions with the current ones;
    invalidating a tag deletes its version record, which turns every item
    written under the old version into a miss, even on volatile backends
    that lose the record on their own.

    Example:
        cache = TagAwareCache(MemoryAdapter())
        cache.save(CacheItem("user-1").set(user).tag("users"))
        cache.invalidate_tags(["users"])
        cache.get_item("user-1").is_hit  # False
    """

    def __init__(
        self,
        items: StorageAdapter,
        tags: StorageAdapter | None = None,
        *,
        known_tag_versions_ttl: Duration = "150ms",
        max_known_tag_versions: int = MAX_KNOWN_TAG_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            items: Adapter storing the cached items.
            tags: Adapter storing tag versions (default: ``items``).
            known_tag_versions_ttl: How long an observed tag version is
                trusted before it is read again from ``tags``.
            max_known_tag_versions: Number of tag versions kept in memory.
            clock: Monotonic time source, in seconds.
        """
        self._items = items
        self._tags = tags if tags is not None else items
        self._deferred: dict[str, CacheItem] = {}
        self._resolver = TagVersionResolver(
            self._tags,
            ttl=duration_seconds(known_tag_versions_ttl),
            max_known=max_known_tag_versions,
            clock=clock,
        )

    def get_item(self, key: str) -> CacheItem:
        """Get one item; check ``is_hit`` to know if it was found."""
        return next(self.get_items([key]))

    def has_item(self, key: str) -> bool:
        return self.get_item(key).is_hit

    def get_items(self, keys: Iterable[str]) -> Iterator[CacheItem]:
        """Get items by key, in order.

        Items whose tags were invalidated are returned as misses. Pending
        deferred writes for any of the keys are committed first.
        """
        keys = list(dict.fromkeys(keys))
        if self._has_deferred(keys):
            self.commit()

        entries = self._items.get_many(keys)
        tags_by_key = {key: entry.tags for key, entry in entries.items() if entry.tags}
        versions = self._resolver.resolve(tags_by_key, persist=False)
        return self._build_items(keys, entries, versions)

    def save(self, item: CacheItem) -> bool:
        """Save an item right away."""
        if not self.save_deferred(item):
            return False
        return self.commit()

    def save_deferred(self, item: CacheItem) -> bool:
        """Buffer an item until the next commit."""
        return self._buffer(item)

    def commit(self) -> bool:
        """Write all buffered items with the current versions of their tags.

        Items the adapter refuses stay buffered for the next commit.
        """
        if not self._deferred:
            return True

        items = dict(self._deferred)
        versions = self._resolver.resolve(
            {key: item._pending_tags() for key, item in items.items()}, persist=True
        )

        ok = True
        written: dict[str, CacheEntry] = {}
        for key, item in items.items():
            entry = item._to_entry(versions)
            if self._items.save_deferred(key, entry):
                del self._deferred[key]
                written[key] = entry
            else:
                ok = False
        flushed = self._items.commit()

        if flushed:
            for key, entry in written.items():
                items[key]._finalize_tags(entry.tags)
        ok = flushed and ok
        if not ok:
            logger.warning("Failed to commit %d cache items", len(items))
        return ok

    def delete_item(self, key: str) -> bool:
        return self.delete_items([key])

    def delete_items(self, keys: Iterable[str]) -> bool:
        """Delete items by key, buffered writes included."""
        keys = list(keys)
        for key in keys:
            self._deferred.pop(key, None)
        return self._items.delete_many(keys)

    def invalidate_tags(self, tags: str | Iterable[str]) -> bool:
        """Invalidate every item tagged with any of ``tags``."""
        record_keys = self._tag_record_keys(tags)
        if not record_keys:
            return True
        for tag in record_keys.values():
            self._resolver.forget(tag)
        logger.debug("Invalidating tags: %s", ", ".join(record_keys.values()))
        return self._tags.delete_many(list(record_keys))

    def clear(self, prefix: str = "") -> bool:
        """Delete items (and buffered writes) whose key starts with ``prefix``."""
        self._drop_deferred(prefix)
        return self._items.clear(prefix)

    def prune(self) -> bool:
        """Remove expired items, if the items adapter supports it."""
        if isinstance(self._items, PruneableAdapter):
            return self._items.prune()
        return False

    def reset(self) -> None:
        """Commit pending writes and forget all known tag versions."""
        self.commit()
        self._resolver.reset()
        if isinstance(self._items, ResettableAdapter):
            self._items.reset()
        if self._tags is not self._items and isinstance(self._tags, ResettableAdapter):
            self._tags.reset()

    def close(self) -> None:
        """Commit pending writes."""
        self.commit()

    def __enter__(self) -> TagAwareCache:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_deferred", None):
            self.commit()
