"""Redis storage adapters."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Sequence
from typing import Any

from tagwise.item import validate_key
from tagwise.types import CacheEntry

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _serialize_entry(entry: CacheEntry) -> str:
    """Serialize a cache entry to JSON."""
    return json.dumps(
        {
            "value": entry.value,
            "tags": dict(entry.tags),
            "expires_at": entry.expires_at,
        }
    )


def _deserialize_entry(data: bytes | str) -> CacheEntry:
    """Deserialize JSON to a cache entry."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    obj = json.loads(data)
    return CacheEntry(
        value=obj["value"],
        tags=obj["tags"],
        expires_at=obj["expires_at"],
    )


class _BaseRedisAdapter:
    """Key layout and deferred writes shared by the sync and async adapters."""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        # key -> (serialized entry, expires_at)
        self._deferred: dict[str, tuple[str, float | None]] = {}

    def _cache_key(self, key: str) -> str:
        """Generate full Redis key for an entry."""
        return f"{self._prefix}:{key}"

    def _scan_pattern(self, prefix: str) -> str:
        """SCAN pattern matching every entry whose key starts with ``prefix``."""
        return _GLOB_SPECIAL.sub(r"\\\1", self._cache_key(prefix)) + "*"

    def _decode(
        self, keys: Sequence[str], values: Sequence[bytes | str | None]
    ) -> dict[str, CacheEntry]:
        now = time.time()
        found: dict[str, CacheEntry] = {}
        for key, data in zip(keys, values, strict=True):
            if data is None:
                continue
            entry = _deserialize_entry(data)
            if not entry.is_expired(now):
                found[key] = entry
        return found

    def _defer(self, key: str, entry: CacheEntry) -> bool:
        """Serialize and queue an entry; ``False`` if it is not JSON serializable."""
        key = validate_key(key)
        try:
            payload = _serialize_entry(entry)
        except (TypeError, ValueError):
            logger.warning("Cannot serialize cache entry %r", key, exc_info=True)
            return False
        self._deferred[key] = (payload, entry.expires_at)
        return True

    def _queue(self, pipe: Any, deferred: dict[str, tuple[str, float | None]]) -> None:
        now = time.time()
        for key, (payload, expires_at) in deferred.items():
            if expires_at is None:
                pipe.set(self._cache_key(key), payload)
            elif expires_at <= now:
                pipe.delete(self._cache_key(key))
            else:
                pipe.set(self._cache_key(key), payload, pxat=int(expires_at * 1000))

    def _drop_deferred(self, prefix: str) -> None:
        for key in [k for k in self._deferred if k.startswith(prefix)]:
            del self._deferred[key]


class RedisAdapter(_BaseRedisAdapter):
    """Sync Redis storage adapter.

    Entries are JSON documents, so cached values must be JSON serializable;
    ``save_deferred`` refuses any other value and returns ``False``.
    Expiry is delegated to Redis through ``PXAT``.
    """

    def __init__(
        self,
        client: Any,  # redis.Redis
        *,
        prefix: str = "tagwise",
    ) -> None:
        super().__init__(prefix)
        self._client = client

    def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``."""
        keys = [validate_key(key) for key in keys]
        if not keys:
            return {}
        values = self._client.mget([self._cache_key(key) for key in keys])
        return self._decode(keys, values)

    def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        return self._defer(key, entry)

    def commit(self) -> bool:
        """Write all queued entries in one pipeline."""
        deferred, self._deferred = self._deferred, {}
        if not deferred:
            return True
        pipe = self._client.pipeline(transaction=False)
        self._queue(pipe, deferred)
        return all(result is not False for result in pipe.execute())

    def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        keys = [validate_key(key) for key in keys]
        for key in keys:
            self._deferred.pop(key, None)
        if keys:
            self._client.delete(*[self._cache_key(key) for key in keys])
        return True

    def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        self._drop_deferred(prefix)
        cursor = 0
        pattern = self._scan_pattern(prefix)
        while True:
            cursor, keys = self._client.scan(cursor, match=pattern, count=100)
            if keys:
                self._client.delete(*keys)
            if cursor == 0:
                break
        return True


class AsyncRedisAdapter(_BaseRedisAdapter):
    """Async Redis storage adapter."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "tagwise",
    ) -> None:
        super().__init__(prefix)
        self._client = client

    async def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``."""
        keys = [validate_key(key) for key in keys]
        if not keys:
            return {}
        values = await self._client.mget([self._cache_key(key) for key in keys])
        return self._decode(keys, values)

    async def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        return self._defer(key, entry)

    async def commit(self) -> bool:
        """Write all queued entries in one pipeline."""
        deferred, self._deferred = self._deferred, {}
        if not deferred:
            return True
        pipe = self._client.pipeline(transaction=False)
        self._queue(pipe, deferred)
        return all(result is not False for result in await pipe.execute())

    async def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        keys = [validate_key(key) for key in keys]
        for key in keys:
            self._deferred.pop(key, None)
        if keys:
            await self._client.delete(*[self._cache_key(key) for key in keys])
        return True

    async def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        self._drop_deferred(prefix)
        cursor: int = 0
        pattern = self._scan_pattern(prefix)
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break
        return True
