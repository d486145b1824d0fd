"""Cache module - Core caching functionality.

This module provides the main cache interface and entry management.
"""

from revalcache_core.cache.entry import CacheEntry, EntryState
from revalcache_core.cache.cache import Cache, CacheConfig
from revalcache_core.cache.decorator import cached, invalidates

__all__ = [
    "CacheEntry",
    "EntryState",
    "Cache",
    "CacheConfig",
    "cached",
    "invalidates",
]
