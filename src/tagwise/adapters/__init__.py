"""Storage adapters for tagwise."""

from tagwise.adapters.base import (
    AsyncPruneableAdapter,
    AsyncResettableAdapter,
    AsyncStorageAdapter,
    PruneableAdapter,
    ResettableAdapter,
    StorageAdapter,
)
from tagwise.adapters.memory import AsyncMemoryAdapter, MemoryAdapter
from tagwise.adapters.redis import AsyncRedisAdapter, RedisAdapter

__all__ = [
    "AsyncMemoryAdapter",
    "AsyncPruneableAdapter",
    "AsyncRedisAdapter",
    "AsyncResettableAdapter",
    "AsyncStorageAdapter",
    "MemoryAdapter",
    "PruneableAdapter",
    "RedisAdapter",
    "ResettableAdapter",
    "StorageAdapter",
]
