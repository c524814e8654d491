"""Exceptions raised by tagwise."""


class CacheError(Exception):
    """Base class for tagwise errors."""


class InvalidArgumentError(CacheError, ValueError):
    """Raised when a cache key or tag name is not acceptable."""
