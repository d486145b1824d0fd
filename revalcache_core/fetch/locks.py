"""RevalCache Key Locks - Per-Key Exclusive Sections.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator


@dataclass
class _KeyLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class KeyLocks:
    """Reference-counted lock per key.

    Unrelated keys never contend. A key's lock exists only while some
    thread holds or waits for it.

    Example:
        locks = KeyLocks()
        with locks.hold("user:1"):
            ...  # read-modify-write of user:1
    """

    def __init__(self):
        self._locks: Dict[Hashable, _KeyLock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Enter the exclusive section for a key."""
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = ["KeyLocks"]
