"""
Storage components for Visitor Analytics.

This package provides:
- An aiosqlite database wrapper
- Timestamp encoding shared by the analytics tables
- An LRU/TTL cache for aggregate queries
"""

from .cache import LRUCache, CacheStats, CacheEntry
from .database import Database, format_timestamp, parse_timestamp

__all__ = [
    'LRUCache',
    'CacheStats',
    'CacheEntry',
    'Database',
    'format_timestamp',
    'parse_timestamp',
]
