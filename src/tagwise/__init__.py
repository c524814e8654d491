"""tagwise - Tag-based cache invalidation for backends without tags."""

from tagwise.adapters import (
    AsyncMemoryAdapter,
    AsyncRedisAdapter,
    AsyncStorageAdapter,
    MemoryAdapter,
    RedisAdapter,
    StorageAdapter,
)
from tagwise.async_cache import AsyncTagAwareCache
from tagwise.cache import TagAwareCache
from tagwise.duration import parse_duration
from tagwise.errors import CacheError, InvalidArgumentError
from tagwise.item import CacheItem
from tagwise.types import TAGS_SUFFIX, CacheEntry, Duration
from tagwise.versions import KnownTagVersions

__version__ = "0.1.0"

__all__ = [
    "TAGS_SUFFIX",
    "AsyncMemoryAdapter",
    "AsyncRedisAdapter",
    "AsyncStorageAdapter",
    "AsyncTagAwareCache",
    "CacheEntry",
    "CacheError",
    "CacheItem",
    "Duration",
    "InvalidArgumentError",
    "KnownTagVersions",
    "MemoryAdapter",
    "RedisAdapter",
    "StorageAdapter",
    "TagAwareCache",
    "parse_duration",
]
