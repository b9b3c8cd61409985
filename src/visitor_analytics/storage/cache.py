"""
Result caching for Visitor Analytics.

This module provides an in-process cache used in front of aggregate queries:
- LRU eviction policy
- TTL support
- Cache statistics
- Async operations
"""

import asyncio
from typing import Optional, Dict, Any, TypeVar, Generic, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from collections import OrderedDict

from ..utils.logging import get_logger


logger = get_logger("visitor-analytics.cache")

T = TypeVar('T')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry(Generic[T]):
    """Single cache entry with metadata."""
    key: str
    value: T
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    access_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "entry_count": self.entry_count,
            "hit_rate": round(self.hit_rate, 4),
        }


class LRUCache(Generic[T]):
    """LRU cache with TTL support."""

    def __init__(
        self,
        max_size: int = 256,
        default_ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize LRU cache.

        Args:
            max_size: Maximum number of entries
            default_ttl: Default time-to-live for entries
            clock: Source of the current time
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock or _utcnow

        self._cache: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[T]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove_entry(key, expired=True)
                self._stats.misses += 1
                return None

            # Update LRU order
            self._cache.move_to_end(key)
            entry.access_count += 1

            self._stats.hits += 1
            return entry.value

    async def put(self, key: str, value: T, ttl: Optional[timedelta] = None) -> None:
        """
        Put value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live (overrides default)
        """
        async with self._lock:
            if key in self._cache:
                self._remove_entry(key)

            while len(self._cache) >= self.max_size:
                # Evict least recently used
                self._remove_entry(next(iter(self._cache)), evicted=True)

            now = self._clock()
            ttl = ttl or self.default_ttl
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + ttl if ttl else None,
            )
            self._stats.entry_count += 1

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[timedelta] = None
    ) -> T:
        """Return the cached value for key, computing and storing it on a miss."""
        value = await self.get(key)
        if value is not None:
            return value

        value = await compute()
        await self.put(key, value, ttl=ttl)
        return value

    async def remove(self, key: str) -> bool:
        """Remove entry from cache."""
        async with self._lock:
            return self._remove_entry(key)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            self._cache.clear()
            self._stats.entry_count = 0
        logger.debug("cache_cleared")

    def _remove_entry(self, key: str, expired: bool = False, evicted: bool = False) -> bool:
        """Remove single entry."""
        if key not in self._cache:
            return False

        self._cache.pop(key)
        self._stats.entry_count -= 1

        if expired:
            self._stats.expirations += 1
        elif evicted:
            self._stats.evictions += 1

        return True

    async def cleanup_expired(self) -> int:
        """Remove expired entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry.is_expired(now)
            ]

            for key in expired_keys:
                self._remove_entry(key, expired=True)

            return len(expired_keys)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats

    def __len__(self) -> int:
        return len(self._cache)
