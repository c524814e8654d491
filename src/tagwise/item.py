"""Cache items handed out and accepted by the tag-aware caches."""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any

from tagwise.duration import duration_seconds
from tagwise.errors import InvalidArgumentError
from tagwise.types import CacheEntry, Duration

RESERVED_CHARACTERS = "{}()/\\@:"


def validate_key(key: object) -> str:
    """Check that ``key`` can be used as a cache key or tag name."""
    if not isinstance(key, str):
        raise InvalidArgumentError(
            f"Cache key must be string, {type(key).__name__!r} given."
        )
    if not key:
        raise InvalidArgumentError("Cache key length must be greater than zero.")
    if any(char in RESERVED_CHARACTERS for char in key):
        raise InvalidArgumentError(
            f"Cache key {key!r} contains reserved characters {RESERVED_CHARACTERS!r}."
        )
    return key


class CacheItem:
    """A key, its value and the tags the value depends on.

    Items are created by callers (``CacheItem("key")``) or returned by
    ``TagAwareCache.get_item``. Tags declared with :meth:`tag` take effect
    when the item is committed. Hit state and the exposed tag names are
    only ever changed by the cache that read or wrote the item.
    """

    __slots__ = ("_declared", "_expiry", "_is_hit", "_key", "_tags", "_value")

    def __init__(self, key: str, value: Any = None) -> None:
        self._key = validate_key(key)
        self._value = value
        self._is_hit = False
        self._expiry: float | None = None
        self._tags: frozenset[str] = frozenset()
        self._declared: dict[str, None] = {}

    @property
    def key(self) -> str:
        return self._key

    @property
    def is_hit(self) -> bool:
        return self._is_hit

    @property
    def expiry(self) -> float | None:
        """Unix timestamp (seconds) after which the item expires."""
        return self._expiry

    @property
    def tags(self) -> frozenset[str]:
        """Names of the tags the stored value depends on."""
        return self._tags

    @property
    def metadata(self) -> Mapping[str, Any]:
        """Read-only view of the item's tags and expiry."""
        return MappingProxyType({"tags": self._tags, "expiry": self._expiry})

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> CacheItem:
        self._value = value
        return self

    def expires_at(self, when: datetime | float | None) -> CacheItem:
        """Set an absolute expiry; ``None`` means the item never expires."""
        if isinstance(when, datetime):
            when = when.timestamp()
        self._expiry = float(when) if when is not None else None
        return self

    def expires_after(self, ttl: Duration | None) -> CacheItem:
        """Set a relative expiry such as ``"5m"`` or ``30_000`` (ms)."""
        if ttl is None:
            self._expiry = None
        else:
            self._expiry = time.time() + duration_seconds(ttl)
        return self

    def tag(self, *tags: str | Iterable[str]) -> CacheItem:
        """Declare tags the value depends on.

        Accepts tag names or iterables of tag names:
            item.tag("user:1")  # rejected, ':' is reserved
            item.tag("user-1", ["posts", "feed"])
        """
        for group in tags:
            names = [group] if isinstance(group, str) else list(group)
            for name in names:
                self._declared[validate_key(name)] = None
        return self

    def __repr__(self) -> str:
        return (
            f"CacheItem(key={self._key!r}, is_hit={self._is_hit}, "
            f"tags={sorted(self._tags)!r})"
        )

    # -------------------------------------------------------------------------
    # Used by the caches only
    # -------------------------------------------------------------------------

    def _mark_hit(self, entry: CacheEntry) -> None:
        self._value = entry.value
        self._is_hit = True
        self._expiry = entry.expires_at
        self._tags = frozenset(entry.tags)

    def _pending_tags(self) -> dict[str, str | None]:
        """Declared tags, with no version known yet."""
        return dict.fromkeys(self._declared)

    def _to_entry(self, versions: Mapping[str, str]) -> CacheEntry:
        """Build the stored entry from the resolved tag versions."""
        snapshot = {tag: versions[tag] for tag in self._declared if tag in versions}
        return CacheEntry(value=self._value, tags=snapshot, expires_at=self._expiry)

    def _finalize_tags(self, names: Iterable[str]) -> None:
        self._tags = frozenset(names)
