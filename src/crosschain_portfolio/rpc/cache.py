"""TTL-based in-memory cache with an injectable clock."""

import hashlib
import json
import time
from collections.abc import Callable
from typing import Any


class CacheEntry:
    """
    Cache entry with TTL support.

    Parameters
    ----------
    value : Any
        Cached value
    ttl : float
        Time-to-live in seconds
    created_at : float
        Clock reading when the entry was stored

    """

    def __init__(self, value: Any, ttl: float, created_at: float) -> None:
        self.value = value
        self.ttl = ttl
        self.created_at = created_at

    def is_expired(self, now: float) -> bool:
        """
        Check if cache entry has expired.

        Parameters
        ----------
        now : float
            Current clock reading

        Returns
        -------
        bool
            True if expired, False otherwise

        """
        return (now - self.created_at) > self.ttl


class TTLCache:
    """
    In-memory cache for fetched metadata with TTL.

    Parameters
    ----------
    default_ttl : float
        Default time-to-live in seconds for cache entries
    clock : Callable[[], float]
        Monotonic clock returning seconds, injectable for tests

    """

    def __init__(self, default_ttl: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self.clock = clock
        self._cache: dict[str, CacheEntry] = {}

    @staticmethod
    def make_key(*parts: Any) -> str:
        """
        Generate cache key from arbitrary JSON-serializable parts.

        Returns
        -------
        str
            Cache key

        """
        # Create a deterministic string representation
        key_str = json.dumps(parts, sort_keys=True, default=str)
        # Hash for consistent key length
        return hashlib.sha256(key_str.encode()).hexdigest()

    def get(self, key: str) -> Any | None:
        """
        Get cached value if it exists and hasn't expired.

        Parameters
        ----------
        key : str
            Cache key

        Returns
        -------
        Any | None
            Cached value if found and valid, None otherwise

        """
        entry = self._cache.get(key)

        if entry is None:
            return None

        if entry.is_expired(self.clock()):
            # Clean up expired entry
            del self._cache[key]
            return None

        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store value in cache with TTL.

        Parameters
        ----------
        key : str
            Cache key
        value : Any
            Value to cache
        ttl : float | None
            Time-to-live in seconds. Uses default_ttl if None.

        """
        ttl = self.default_ttl if ttl is None else ttl
        self._cache[key] = CacheEntry(value, ttl, self.clock())

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from cache.

        Returns
        -------
        int
            Number of entries removed

        """
        now = self.clock()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)
