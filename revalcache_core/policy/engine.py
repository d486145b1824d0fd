"""RevalCache Policy Engine - Read Decisions and Entry Timestamps.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import math
from enum import Enum, auto
from typing import Optional, Tuple

from revalcache_core.cache.entry import CacheEntry, EntryState
from revalcache_core.exceptions import PolicyError
from revalcache_core.policy.policy import (
    CachePolicy,
    ForceCache,
    NoStore,
    Revalidate,
)


class Decision(Enum):
    """Outcome of inspecting an entry for a read."""

    BYPASS = auto()            # no-store: fetch, do not store
    MISS = auto()              # fetch synchronously and store
    HIT = auto()               # serve cached value
    STALE_HIT = auto()         # serve cached value, schedule refresh
    REVALIDATING_HIT = auto()  # serve cached value, refresh already running


class RevalidationPolicyEngine:
    """Decides how a read is served.

    The engine is stateless. Freshness is judged against the timestamps
    the entry was written with; the policy of the current read only
    matters for no-store bypass.

    Example:
        engine = RevalidationPolicyEngine()
        decision = engine.decide(entry, Revalidate(60), now=time.time())
    """

    def decide(
        self,
        entry: Optional[CacheEntry],
        policy: CachePolicy,
        now: float,
    ) -> Decision:
        """Classify a read.

        Args:
            entry: Stored entry or None
            policy: Policy of the current read
            now: Current time

        Returns:
            Decision
        """
        if isinstance(policy, NoStore):
            return Decision.BYPASS
        if not isinstance(policy, (ForceCache, Revalidate)):
            raise PolicyError(f"Unknown cache policy: {policy!r}")

        if entry is None:
            return Decision.MISS

        state = entry.effective_state(now)
        if state is EntryState.FRESH:
            return Decision.HIT
        if state is EntryState.STALE:
            return Decision.STALE_HIT
        if state is EntryState.REVALIDATING:
            return Decision.REVALIDATING_HIT
        return Decision.MISS

    def timestamps(
        self,
        policy: CachePolicy,
        now: float,
    ) -> Tuple[float, Optional[float]]:
        """Compute stale_at and expires_at for a value fetched at ``now``.

        Args:
            policy: Policy the value was fetched under
            now: Fetch completion time

        Returns:
            (stale_at, expires_at)
        """
        if isinstance(policy, Revalidate):
            stale_at = now + policy.seconds
            expires_at = None if policy.expire is None else now + policy.expire
            return stale_at, expires_at
        if isinstance(policy, ForceCache):
            return math.inf, None
        raise PolicyError(f"Policy {policy!r} does not store entries")


__all__ = ["Decision", "RevalidationPolicyEngine"]
