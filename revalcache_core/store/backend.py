"""RevalCache Entry Store - Abstract Storage Interface.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from revalcache_core.cache.entry import CacheEntry

logger = logging.getLogger(__name__)

_PROBE_KEY = "__revalcache_probe__"


@dataclass
class StorageConfig:
    """Entry store configuration.

    Attributes:
        name: Store name, used in logs
        max_size: Entry limit; writes of unseen keys past it are refused
        serializer: Wire format for stores that persist bytes
    """

    name: str = "storage"
    max_size: Optional[int] = None
    serializer: str = "pickle"


@dataclass
class StorageStats:
    """Operation counters for one store.

    Attributes:
        reads: Entries looked up
        writes: Entries stored
        deletes: Entries removed
        entry_count: Entries held after the last mutation
        errors: Backend failures
        last_error: Message of the most recent failure
        last_error_at: When it happened
    """

    reads: int = 0
    writes: int = 0
    deletes: int = 0
    entry_count: int = 0
    errors: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def record_error(self, error: str) -> None:
        self.errors += 1
        self.last_error = error
        self.last_error_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EntryStore(ABC):
    """Key to entry map backing a cache.

    Pure map semantics. Freshness, tags and locking are the cache's
    business; a store only keeps whatever entry it was last given.

    Implementations:
    - MemoryStore: In-process dictionary
    - RedisStore: Redis backend
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self._stats = StorageStats()

    @abstractmethod
    def read(self, key: str) -> Optional[CacheEntry]:
        """Entry stored under a key, None when absent."""

    @abstractmethod
    def write(self, key: str, entry: CacheEntry) -> bool:
        """Store an entry, replacing whatever the key held.

        Returns:
            False when the store refused or failed the write
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key was present
        """

    @abstractmethod
    def keys(self, pattern: Optional[str] = None) -> List[str]:
        """Stored keys, filtered by a glob pattern when given."""

    @abstractmethod
    def clear(self) -> int:
        """Remove every entry and return how many there were."""

    def exists(self, key: str) -> bool:
        return self.read(key) is not None

    def size(self) -> int:
        return len(self.keys())

    def scan(self, pattern: Optional[str] = None) -> Iterator[Tuple[str, CacheEntry]]:
        """Yield (key, entry) pairs, skipping keys deleted mid-scan."""
        for key in self.keys(pattern):
            entry = self.read(key)
            if entry is not None:
                yield key, entry

    def get_stats(self) -> StorageStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = StorageStats()

    def health_check(self) -> bool:
        """Round-trip a probe entry through the store.

        Returns:
            True if the probe could be written and read back
        """
        probe = CacheEntry(key=_PROBE_KEY, value=b"ok")
        try:
            if not self.write(_PROBE_KEY, probe):
                return False
            stored = self.read(_PROBE_KEY)
            return stored is not None and stored.value == probe.value
        except Exception as e:
            logger.error(f"Health check of {self.config.name} failed: {e}")
            return False
        finally:
            try:
                self.delete(_PROBE_KEY)
            except Exception as e:
                logger.error(f"Could not remove health probe from {self.config.name}: {e}")

    def close(self) -> None:
        """Release backend resources."""

    def __contains__(self, key: str) -> bool:
        return self.exists(key)

    def __len__(self) -> int:
        return self.size()


__all__ = ["EntryStore", "StorageConfig", "StorageStats"]
