"""RevalCache Tag Index - Reverse Index from Tag to Keys.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Iterable, List, Set

logger = logging.getLogger(__name__)


class TagIndex:
    """Reverse index of tag -> keys, with the forward key -> tags map.

    Both directions are kept under one lock so they never disagree.
    Empty tag buckets are dropped.

    Example:
        index = TagIndex()
        index.replace_tags("post:1", {"posts", "author:7"})
        index.keys_for_tag("posts")   # {"post:1"}
        index.remove_all_tags("post:1")
    """

    def __init__(self):
        self._by_tag: Dict[str, Set[str]] = {}
        self._by_key: Dict[str, FrozenSet[str]] = {}
        self._lock = threading.RLock()

    def add_tags(self, key: str, tags: Iterable[str]) -> None:
        """Associate additional tags with a key.

        Args:
            key: Cache key
            tags: Tags to add
        """
        tags = frozenset(tags)
        if not tags:
            return

        with self._lock:
            current = self._by_key.get(key, frozenset())
            self._by_key[key] = current | tags
            for tag in tags:
                self._by_tag.setdefault(tag, set()).add(key)

    def remove_all_tags(self, key: str) -> Set[str]:
        """Drop every association of a key.

        Args:
            key: Cache key

        Returns:
            Tags the key had
        """
        with self._lock:
            tags = self._by_key.pop(key, frozenset())
            for tag in tags:
                bucket = self._by_tag.get(tag)
                if bucket is None:
                    continue
                bucket.discard(key)
                if not bucket:
                    del self._by_tag[tag]
            return set(tags)

    def replace_tags(self, key: str, tags: Iterable[str]) -> None:
        """Swap a key's tags, removing the old set first.

        Args:
            key: Cache key
            tags: New tags
        """
        with self._lock:
            self.remove_all_tags(key)
            self.add_tags(key, tags)

    def keys_for_tag(self, tag: str) -> Set[str]:
        """Snapshot of keys carrying a tag.

        Args:
            tag: Tag

        Returns:
            Copy of the key set
        """
        with self._lock:
            return set(self._by_tag.get(tag, ()))

    def tags_for_key(self, key: str) -> FrozenSet[str]:
        """Tags currently associated with a key."""
        with self._lock:
            return self._by_key.get(key, frozenset())

    def tags(self) -> List[str]:
        """All tags with at least one key."""
        with self._lock:
            return list(self._by_tag.keys())

    def keys(self) -> List[str]:
        """All keys with at least one tag."""
        with self._lock:
            return list(self._by_key.keys())

    def clear(self) -> None:
        """Drop every association."""
        with self._lock:
            self._by_tag.clear()
            self._by_key.clear()

    def __contains__(self, tag: str) -> bool:
        return tag in self._by_tag

    def __len__(self) -> int:
        return len(self._by_tag)

    def __repr__(self) -> str:
        return f"TagIndex(tags={len(self._by_tag)}, keys={len(self._by_key)})"


__all__ = ["TagIndex"]
