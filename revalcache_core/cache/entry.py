"""RevalCache Entry - Cache Entry with Freshness and State Management.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import dataclasses
import math
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, FrozenSet, Iterable, Optional

from revalcache_core.exceptions import PolicyError


class EntryState(Enum):
    """Cache entry states."""

    FRESH = auto()         # Within its revalidate window
    STALE = auto()         # Servable, refresh due
    REVALIDATING = auto()  # Servable, refresh in flight
    INVALID = auto()       # Must be refetched before serving


@dataclass(frozen=True)
class CacheEntry:
    """An immutable cache entry.

    Every transition produces a new entry, so a reader holding an entry
    never sees value, tags and timestamps out of step.

    Attributes:
        key: Cache key
        value: Cached value
        tags: Tags for bulk invalidation
        created_at: When the value was fetched
        stale_at: When the value stops being fresh (inf for permanent)
        expires_at: Hard TTL, entry is dropped after this
        state: Stored entry state
        version: Bumped every time the key is refilled
    """

    key: str
    value: Any
    tags: FrozenSet[str] = field(default_factory=frozenset)
    created_at: float = field(default_factory=time.time)
    stale_at: float = math.inf
    expires_at: Optional[float] = None
    state: EntryState = EntryState.FRESH
    version: int = 1

    def __post_init__(self):
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))
        if self.stale_at < self.created_at:
            raise PolicyError(
                f"stale_at ({self.stale_at}) precedes created_at ({self.created_at})"
            )
        if self.expires_at is not None and self.expires_at < self.stale_at:
            raise PolicyError(
                f"expires_at ({self.expires_at}) precedes stale_at ({self.stale_at})"
            )

    @property
    def is_permanent(self) -> bool:
        """Never goes stale on its own."""
        return math.isinf(self.stale_at)

    def is_stale_at(self, now: float) -> bool:
        """Check whether the revalidate window has elapsed."""
        return now >= self.stale_at

    def is_expired_at(self, now: float) -> bool:
        """Check whether the hard TTL has elapsed."""
        return self.expires_at is not None and now > self.expires_at

    def effective_state(self, now: float) -> EntryState:
        """Stored state with time-based staleness applied."""
        if self.state is EntryState.FRESH and self.is_stale_at(now):
            return EntryState.STALE
        return self.state

    def age(self, now: float) -> float:
        """Seconds since the value was fetched."""
        return max(0.0, now - self.created_at)

    def remaining_ttl(self, now: float) -> Optional[float]:
        """Seconds until hard expiry, None if the entry never expires."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - now)

    def with_state(self, state: EntryState) -> "CacheEntry":
        """Copy of this entry in another state."""
        return dataclasses.replace(self, state=state)

    def refilled(
        self,
        value: Any,
        tags: Iterable[str],
        created_at: float,
        stale_at: float,
        expires_at: Optional[float],
        state: EntryState = EntryState.FRESH,
    ) -> "CacheEntry":
        """New generation of this entry carrying a freshly fetched value."""
        return CacheEntry(
            key=self.key,
            value=value,
            tags=frozenset(tags),
            created_at=created_at,
            stale_at=stale_at,
            expires_at=expires_at,
            state=state,
            version=self.version + 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation
        """
        return {
            "key": self.key,
            "value": self.value,
            "tags": sorted(self.tags),
            "created_at": self.created_at,
            "stale_at": None if self.is_permanent else self.stale_at,
            "expires_at": self.expires_at,
            "state": self.state.name,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Create from dictionary.

        Args:
            data: Dictionary data

        Returns:
            CacheEntry instance
        """
        stale_at = data.get("stale_at")
        return cls(
            key=data["key"],
            value=data["value"],
            tags=frozenset(data.get("tags", ())),
            created_at=data["created_at"],
            stale_at=math.inf if stale_at is None else stale_at,
            expires_at=data.get("expires_at"),
            state=EntryState[data.get("state", "FRESH")],
            version=data.get("version", 1),
        )

    def __repr__(self) -> str:
        return (
            f"CacheEntry(key={self.key!r}, state={self.state.name}, "
            f"tags={sorted(self.tags)!r}, version={self.version})"
        )


__all__ = ["CacheEntry", "EntryState"]
