"""Shared pytest fixtures."""

from collections.abc import Sequence

import pytest

from tagwise import AsyncMemoryAdapter, CacheEntry, MemoryAdapter


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingAdapter:
    """MemoryAdapter wrapper recording every call.

    Supports neither prune() nor reset().
    """

    def __init__(self, inner: MemoryAdapter | None = None) -> None:
        self.inner = inner if inner is not None else MemoryAdapter()
        self.calls: list[tuple[str, list[str]]] = []

    def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        self.calls.append(("get_many", list(keys)))
        return self.inner.get_many(keys)

    def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        self.calls.append(("save_deferred", [key]))
        return self.inner.save_deferred(key, entry)

    def commit(self) -> bool:
        self.calls.append(("commit", []))
        return self.inner.commit()

    def delete_many(self, keys: Sequence[str]) -> bool:
        self.calls.append(("delete_many", list(keys)))
        return self.inner.delete_many(keys)

    def clear(self, prefix: str = "") -> bool:
        self.calls.append(("clear", [prefix]))
        return self.inner.clear(prefix)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def saved_keys(self) -> list[str]:
        return [keys[0] for call, keys in self.calls if call == "save_deferred"]


class AsyncCountingAdapter:
    """AsyncMemoryAdapter wrapper recording every call."""

    def __init__(self) -> None:
        self.inner = AsyncMemoryAdapter()
        self.calls: list[tuple[str, list[str]]] = []

    async def get_many(self, keys: Sequence[str]) -> dict[str, CacheEntry]:
        self.calls.append(("get_many", list(keys)))
        return await self.inner.get_many(keys)

    async def save_deferred(self, key: str, entry: CacheEntry) -> bool:
        self.calls.append(("save_deferred", [key]))
        return await self.inner.save_deferred(key, entry)

    async def commit(self) -> bool:
        self.calls.append(("commit", []))
        return await self.inner.commit()

    async def delete_many(self, keys: Sequence[str]) -> bool:
        self.calls.append(("delete_many", list(keys)))
        return await self.inner.delete_many(keys)

    async def clear(self, prefix: str = "") -> bool:
        self.calls.append(("clear", [prefix]))
        return await self.inner.clear(prefix)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock starting at t=1000s."""
    return ManualClock()


@pytest.fixture
def adapter() -> MemoryAdapter:
    """Create a fresh MemoryAdapter for each test."""
    return MemoryAdapter()


@pytest.fixture
def async_adapter() -> AsyncMemoryAdapter:
    """Create a fresh AsyncMemoryAdapter for each test."""
    return AsyncMemoryAdapter()


@pytest.fixture
def tags_adapter() -> CountingAdapter:
    """Create a call-recording adapter for tag versions."""
    return CountingAdapter()


@pytest.fixture
def async_tags_adapter() -> AsyncCountingAdapter:
    """Create a call-recording async adapter for tag versions."""
    return AsyncCountingAdapter()
