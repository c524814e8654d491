"""Tag version resolution.

Every tag has a version record in the tags adapter. Items are stored with
the versions their tags had when they were written, and an item is only a
hit while all those versions are still current. Invalidating a tag deletes
its record; the next write that needs the tag mints a new version.

Resolvers remember the versions they observed for a short window
(``ttl``) so that repeated reads of the same tags do not hit the tags
adapter every time. The decision and bookkeeping steps live in
``_BaseResolver`` and never perform I/O; ``TagVersionResolver`` and
``AsyncTagVersionResolver`` only differ in how they talk to the adapter.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass

from tagwise.adapters.base import AsyncStorageAdapter, StorageAdapter
from tagwise.errors import InvalidArgumentError
from tagwise.item import validate_key
from tagwise.types import CacheEntry, tag_record_key

logger = logging.getLogger(__name__)

MAX_KNOWN_TAG_VERSIONS = 1000

TagsByKey = Mapping[str, Mapping[str, str | None]]


def mint_version() -> str:
    """Create a new random version token."""
    return secrets.token_hex(6)


class KnownTagVersions:
    """Recency-ordered map of tag -> (observed_at, version).

    The least recently touched tag comes first. Entries carry no expiry of
    their own; callers compare ``observed_at`` against their window.
    """

    def __init__(self) -> None:
        self._versions: OrderedDict[str, tuple[float, str]] = OrderedDict()

    def get(self, tag: str) -> tuple[float, str] | None:
        return self._versions.get(tag)

    def touch(self, tag: str) -> None:
        """Move ``tag`` to the most recent position if it is known."""
        if tag in self._versions:
            self._versions.move_to_end(tag)

    def remember(self, tag: str, version: str, observed_at: float) -> None:
        self._versions[tag] = (observed_at, version)
        self._versions.move_to_end(tag)

    def forget(self, tag: str) -> None:
        self._versions.pop(tag, None)

    def trim(self, limit: int) -> int:
        """Evict the oldest entries when above ``limit``.

        One sweep leaves the newest ``limit // 2`` entries. Returns the
        number of evicted entries.
        """
        if len(self._versions) <= limit:
            return 0
        evicted = len(self._versions) - limit // 2
        for _ in range(evicted):
            self._versions.popitem(last=False)
        return evicted

    def clear(self) -> None:
        self._versions.clear()

    def __contains__(self, tag: object) -> bool:
        return tag in self._versions

    def __iter__(self) -> Iterator[str]:
        return iter(self._versions)

    def __len__(self) -> int:
        return len(self._versions)


@dataclass
class _Lookup:
    """Tags that must be read from the tags adapter."""

    record_keys: dict[str, str]  # record key -> tag
    observed_at: float


class _BaseResolver:
    def __init__(
        self,
        *,
        ttl: float = 0.15,
        max_known: int = MAX_KNOWN_TAG_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        if max_known <= 0:
            raise ValueError("max_known must be a positive integer")
        self._ttl = ttl
        self._max_known = max_known
        self._clock = clock
        self.known = KnownTagVersions()

    def forget(self, tag: str) -> None:
        self.known.forget(tag)

    def reset(self) -> None:
        self.known.clear()

    def _plan(self, tags_by_key: TagsByKey) -> tuple[dict[str, str], _Lookup | None]:
        """Answer from known versions, or describe the lookup to perform."""
        declared: dict[str, str | None] = {}
        for tags in tags_by_key.values():
            for tag, version in tags.items():
                if tag not in declared:
                    declared[tag] = version
                elif declared[tag] != version:
                    # Items disagree, so at least one of them is stale
                    self.known.forget(tag)

        if not declared:
            return {}, None

        now = self._clock()
        fetch = False
        versions: dict[str, str] = {}
        for tag, version in declared.items():
            known = self.known.get(tag)
            if known is None or known[1] != version or now - known[0] >= self._ttl:
                fetch = True
            else:
                versions[tag] = known[1]
            self.known.touch(tag)

        if not fetch:
            return versions, None

        return {}, _Lookup({tag_record_key(tag): tag for tag in declared}, now)

    def _complete(
        self, lookup: _Lookup, records: Mapping[str, CacheEntry]
    ) -> tuple[dict[str, str], dict[str, CacheEntry]]:
        """Record fetched versions; mint one shared version for missing tags."""
        versions: dict[str, str] = {}
        minted: dict[str, CacheEntry] = {}
        new_version: str | None = None
        for record_key, tag in lookup.record_keys.items():
            record = records.get(record_key)
            if record is None:
                if new_version is None:
                    new_version = mint_version()
                minted[record_key] = CacheEntry(value=new_version)
                version = new_version
            else:
                version = str(record.value)
            versions[tag] = version
            self.known.remember(tag, version, lookup.observed_at)

        evicted = self.known.trim(max(self._max_known, len(minted) * 2))
        if evicted:
            logger.debug("Evicted %d known tag versions", evicted)
        return versions, minted

    @staticmethod
    def _check_tags(lookup: _Lookup) -> None:
        """Raise the validation error for the first invalid tag name."""
        for tag in lookup.record_keys.values():
            validate_key(tag)


class TagVersionResolver(_BaseResolver):
    """Resolves current tag versions against a sync tags adapter."""

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        ttl: float = 0.15,
        max_known: int = MAX_KNOWN_TAG_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ttl=ttl, max_known=max_known, clock=clock)
        self._adapter = adapter

    def resolve(self, tags_by_key: TagsByKey, *, persist: bool) -> dict[str, str]:
        """Return the current version of every tag referenced in ``tags_by_key``.

        Args:
            tags_by_key: Declared tag versions per item key. ``None`` means
                the version is not known yet (pending writes).
            persist: Save versions minted for unknown tags.

        Returns:
            Mapping of tag name to version.
        """
        versions, lookup = self._plan(tags_by_key)
        if lookup is None:
            return versions

        logger.debug("Fetching versions of %d tags", len(lookup.record_keys))
        try:
            records = self._adapter.get_many(list(lookup.record_keys))
        except InvalidArgumentError:
            self._check_tags(lookup)
            raise

        versions, minted = self._complete(lookup, records)
        if minted and persist:
            self._save(minted)
        return versions

    def _save(self, minted: dict[str, CacheEntry]) -> None:
        for record_key in sorted(minted):
            self._adapter.save_deferred(record_key, minted[record_key])
        if not self._adapter.commit():
            logger.warning("Failed to save %d new tag versions", len(minted))
        else:
            logger.debug("Saved %d new tag versions", len(minted))


class AsyncTagVersionResolver(_BaseResolver):
    """Resolves current tag versions against an async tags adapter."""

    def __init__(
        self,
        adapter: AsyncStorageAdapter,
        *,
        ttl: float = 0.15,
        max_known: int = MAX_KNOWN_TAG_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ttl=ttl, max_known=max_known, clock=clock)
        self._adapter = adapter

    async def resolve(
        self, tags_by_key: TagsByKey, *, persist: bool
    ) -> dict[str, str]:
        """Return the current version of every tag referenced in ``tags_by_key``."""
        versions, lookup = self._plan(tags_by_key)
        if lookup is None:
            return versions

        logger.debug("Fetching versions of %d tags", len(lookup.record_keys))
        try:
            records = await self._adapter.get_many(list(lookup.record_keys))
        except InvalidArgumentError:
            self._check_tags(lookup)
            raise

        versions, minted = self._complete(lookup, records)
        if minted and persist:
            await self._save(minted)
        return versions

    async def _save(self, minted: dict[str, CacheEntry]) -> None:
        for record_key in sorted(minted):
            await self._adapter.save_deferred(record_key, minted[record_key])
        if not await self._adapter.commit():
            logger.warning("Failed to save %d new tag versions", len(minted))
        else:
            logger.debug("Saved %d new tag versions", len(minted))
