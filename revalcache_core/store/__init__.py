"""Store module - Entry store backends."""

from revalcache_core.store.backend import EntryStore, StorageConfig, StorageStats
from revalcache_core.store.memory import MemoryStore
from revalcache_core.store.redis import RedisStore, RedisConfig

__all__ = [
    "EntryStore",
    "StorageConfig",
    "StorageStats",
    "MemoryStore",
    "RedisStore",
    "RedisConfig",
]
