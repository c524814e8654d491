"""In-memory storage adapters."""

import asyncio
import threading
import time
from collections import OrderedDict
from collections.abc import Sequence

from tagwise.item import validate_key
from tagwise.types import CacheEntry


class _MemoryStore:
    """LRU dict of entries shared by the sync and async adapters."""

    def __init__(self, max_items: int | None) -> None:
        if max_items is not None and max_items <= 0:
            raise ValueError("max_items must be a positive integer")
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._deferred: dict[str, CacheEntry] = {}
        self._max_items = max_items

    def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        for key in keys:
            validate_key(key)
        now = time.time()
        found: dict[str, CacheEntry] = {}
        for key in keys:
            entry = self._cache.get(key)
            if entry is None:
                continue
            if entry.is_expired(now):
                del self._cache[key]
                continue
            self._cache.move_to_end(key)  # LRU touch
            found[key] = entry
        return found

    def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        self._deferred[validate_key(key)] = entry
        return True

    def commit(self) -> bool:
        deferred, self._deferred = self._deferred, {}
        now = time.time()
        for key, entry in deferred.items():
            if entry.is_expired(now):
                self._cache.pop(key, None)
                continue
            self._cache[key] = entry
            self._cache.move_to_end(key)
            if self._max_items and len(self._cache) > self._max_items:
                self._cache.popitem(last=False)
        return True

    def delete_many(self, keys: Sequence[str]) -> bool:
        for key in keys:
            validate_key(key)
        for key in keys:
            self._cache.pop(key, None)
            self._deferred.pop(key, None)
        return True

    def clear(self, prefix: str) -> bool:
        if not prefix:
            self._cache.clear()
            self._deferred.clear()
            return True
        for key in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[key]
        for key in [k for k in self._deferred if k.startswith(prefix)]:
            del self._deferred[key]
        return True

    def prune(self) -> bool:
        now = time.time()
        for key in [k for k, e in self._cache.items() if e.is_expired(now)]:
            del self._cache[key]
        return True

    def reset(self) -> None:
        self._cache.clear()
        self._deferred.clear()

    def __len__(self) -> int:
        return len(self._cache)


class MemoryAdapter:
    """Sync in-memory storage adapter with optional LRU eviction.

    With ``max_items`` set, the least recently used entries are dropped
    when the store is full. Tag version records are not exempt, which
    makes this adapter a faithful model of a volatile backend.
    """

    def __init__(self, max_items: int | None = None) -> None:
        self._store = _MemoryStore(max_items)
        self._lock = threading.Lock()

    def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``."""
        with self._lock:
            return self._store.get_many(keys)

    def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        with self._lock:
            return self._store.save_deferred(key, entry)

    def commit(self) -> bool:
        """Write all queued entries."""
        with self._lock:
            return self._store.commit()

    def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        with self._lock:
            return self._store.delete_many(keys)

    def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        with self._lock:
            return self._store.clear(prefix)

    def prune(self) -> bool:
        """Remove expired entries."""
        with self._lock:
            return self._store.prune()

    def reset(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._store.reset()

    def __len__(self) -> int:
        return len(self._store)


class AsyncMemoryAdapter:
    """Async in-memory storage adapter with optional LRU eviction."""

    def __init__(self, max_items: int | None = None) -> None:
        self._store = _MemoryStore(max_items)
        self._lock = asyncio.Lock()

    async def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``."""
        async with self._lock:
            return self._store.get_many(keys)

    async def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        async with self._lock:
            return self._store.save_deferred(key, entry)

    async def commit(self) -> bool:
        """Write all queued entries."""
        async with self._lock:
            return self._store.commit()

    async def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        async with self._lock:
            return self._store.delete_many(keys)

    async def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        async with self._lock:
            return self._store.clear(prefix)

    async def prune(self) -> bool:
        """Remove expired entries."""
        async with self._lock:
            return self._store.prune()

    async def reset(self) -> None:
        """Drop every entry."""
        async with self._lock:
            self._store.reset()

    def __len__(self) -> int:
        return len(self._store)
