"""RevalCache Memory Store - In-Process Entry Store.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from typing import Dict, List, Optional

from revalcache_core.cache.entry import CacheEntry
from revalcache_core.store.backend import EntryStore, StorageConfig

logger = logging.getLogger(__name__)


class MemoryStore(EntryStore):
    """Entry store backed by a dict.

    Entries are immutable, so the stored object is handed out as is.
    With ``max_size`` set the store never evicts: it refuses entries for
    new keys and keeps accepting replacements for keys it already holds.

    Example:
        store = MemoryStore(StorageConfig(name="pages", max_size=10000))
        cache = Cache(store=store)
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        super().__init__(config)
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def _is_full_for(self, key: str) -> bool:
        limit = self.config.max_size
        return bool(limit) and key not in self._entries and len(self._entries) >= limit

    def read(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            self._stats.reads += 1
            return self._entries.get(key)

    def write(self, key: str, entry: CacheEntry) -> bool:
        with self._lock:
            if self._is_full_for(key):
                logger.warning(
                    f"{self.config.name} holds {len(self._entries)} entries, refusing {key!r}"
                )
                return False
            self._entries[key] = entry
            self._stats.writes += 1
            self._stats.entry_count = len(self._entries)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats.deletes += 1
                self._stats.entry_count = len(self._entries)
        return removed

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        with self._lock:
            names = list(self._entries)
        if pattern is None:
            return names
        return [name for name in names if fnmatch.fnmatchcase(name, pattern)]

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries = {}
            self._stats.entry_count = 0
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"MemoryStore(name={self.config.name!r}, entries={self.size()})"


__all__ = ["MemoryStore"]
