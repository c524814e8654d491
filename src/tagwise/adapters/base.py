"""Base adapter protocols for storage backends."""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from tagwise.types import CacheEntry


@runtime_checkable
class StorageAdapter(Protocol):
    """Sync storage adapter interface."""

    def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``; misses are left out."""
        ...

    def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        ...

    def commit(self) -> bool:
        """Write all queued entries."""
        ...

    def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        ...

    def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        ...


@runtime_checkable
class AsyncStorageAdapter(Protocol):
    """Async storage adapter interface."""

    async def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        """Get the entries that exist for ``keys``; misses are left out."""
        ...

    async def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        """Queue an entry for the next commit."""
        ...

    async def commit(self) -> bool:
        """Write all queued entries."""
        ...

    async def delete_many(self, keys: Sequence[str]) -> bool:
        """Delete entries by key."""
        ...

    async def clear(self, prefix: str = "") -> bool:
        """Delete all entries whose key starts with ``prefix``."""
        ...


@runtime_checkable
class PruneableAdapter(Protocol):
    """Optional mixin for sync adapters that can drop expired entries."""

    def prune(self) -> bool:
        """Remove expired entries."""
        ...


@runtime_checkable
class ResettableAdapter(Protocol):
    """Optional mixin for sync adapters holding local state."""

    def reset(self) -> None:
        """Drop local state."""
        ...


@runtime_checkable
class AsyncPruneableAdapter(Protocol):
    """Optional mixin for async adapters that can drop expired entries."""

    async def prune(self) -> bool:
        """Remove expired entries."""
        ...


@runtime_checkable
class AsyncResettableAdapter(Protocol):
    """Optional mixin for async adapters holding local state."""

    async def reset(self) -> None:
        """Drop local state."""
        ...
