"""Core types for tagwise."""

from collections.abc import Mapping
from dataclasses import dataclass, field

# Suffix appended to a tag name to build the key of its version record.
# Item keys can never contain NUL, so records cannot collide with items.
TAGS_SUFFIX = "\0tags\0"

# "30s", "5m", "2h", "1d" or milliseconds
Duration = str | int


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored value with its tag-version snapshot."""

    value: object
    tags: Mapping[str, str] = field(default_factory=dict)  # tag -> version
    expires_at: float | None = None  # Unix timestamp, seconds

    def is_expired(self, now: float) -> bool:
        """Check if the entry is past its expiry."""
        return self.expires_at is not None and now >= self.expires_at


def tag_record_key(tag: str) -> str:
    """Key under which the version record of ``tag`` is stored."""
    return f"{tag}{TAGS_SUFFIX}"
