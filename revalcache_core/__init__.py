"""RevalCache - Tag-Based Revalidating Response Cache.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

An in-process cache for fetched responses with:
- no-store / force-cache / revalidate(N) policies
- Stale-while-revalidate reads with background refresh
- Single-flight fetching (one fetcher run per key at a time)
- Tag-based and per-key invalidation, purge, hard TTL
- Memory and Redis entry stores
- Metrics with Prometheus export

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                        RevalCache System                        │
    ├─────────────────────────────────────────────────────────────────┤
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐             │
    │  │   Cache     │  │ Invalidation│  │ Decorators  │   API       │
    │  │    get      │  │ tag / path  │  │cached / inv.│   LAYER     │
    │  └──────┬──────┘  └──────┬──────┘  └──────┬──────┘             │
    │         │                │                │                     │
    │  ┌──────┴────────────────┴────────────────┴──────┐             │
    │  │   Policy Engine          Fetch Coordinator     │   CONTROL   │
    │  │  hit/stale/miss       single-flight, refresh   │   LAYER     │
    │  └──────────────────────┬────────────────────────┘             │
    │                         │                                       │
    │  ┌──────────────────────┴────────────────────────┐             │
    │  │   Entry Store              Tag Index           │   STATE     │
    │  │  ┌────────┐ ┌───────┐    tag -> keys           │   LAYER     │
    │  │  │ Memory │ │ Redis │                          │             │
    │  │  └────────┘ └───────┘                          │             │
    │  └──────────────────────────────────────────────┘             │
    └─────────────────────────────────────────────────────────────────┘

Example Usage:
    from revalcache_core import Cache, Revalidate, NoStore

    cache = Cache()

    # Fresh for 60s, then served stale while refreshing
    posts = cache.get("posts", fetch_posts, Revalidate(60), tags=["posts"])

    # Never cached
    me = cache.get("me", fetch_me, NoStore())

    # After a mutation
    cache.revalidate_tag("posts")

    # Decorator
    @cache.cached(Revalidate(300), tags=["users"])
    def get_user(user_id: int):
        return api.get_user(user_id)
"""

__version__ = "1.0.0"
__author__ = "BlackRoad OS"

from revalcache_core.cache.entry import CacheEntry, EntryState
from revalcache_core.cache.cache import Cache, CacheConfig
from revalcache_core.cache.decorator import cached, invalidates
from revalcache_core.exceptions import (
    CacheError,
    FetchError,
    FetchTimeout,
    PolicyError,
    ConsistencyViolation,
)
from revalcache_core.policy.policy import (
    PolicyKind,
    NoStore,
    ForceCache,
    Revalidate,
    CachePolicy,
    policy_from_options,
)
from revalcache_core.policy.engine import Decision, RevalidationPolicyEngine
from revalcache_core.index.tags import TagIndex
from revalcache_core.fetch.coordinator import FetchCoordinator
from revalcache_core.fetch.locks import KeyLocks
from revalcache_core.store.backend import EntryStore, StorageConfig, StorageStats
from revalcache_core.store.memory import MemoryStore
from revalcache_core.store.redis import RedisStore, RedisConfig
from revalcache_core.protocol.serializer import (
    Serializer,
    JSONSerializer,
    PickleSerializer,
    MsgPackSerializer,
)
from revalcache_core.metrics.collector import MetricsCollector, CacheMetrics

__all__ = [
    # Cache
    "Cache",
    "CacheConfig",
    "CacheEntry",
    "EntryState",
    "cached",
    "invalidates",
    # Errors
    "CacheError",
    "FetchError",
    "FetchTimeout",
    "PolicyError",
    "ConsistencyViolation",
    # Policy
    "PolicyKind",
    "NoStore",
    "ForceCache",
    "Revalidate",
    "CachePolicy",
    "policy_from_options",
    "Decision",
    "RevalidationPolicyEngine",
    # Index and fetch
    "TagIndex",
    "FetchCoordinator",
    "KeyLocks",
    # Storage
    "EntryStore",
    "StorageConfig",
    "StorageStats",
    "MemoryStore",
    "RedisStore",
    "RedisConfig",
    # Protocol
    "Serializer",
    "JSONSerializer",
    "PickleSerializer",
    "MsgPackSerializer",
    # Metrics
    "MetricsCollector",
    "CacheMetrics",
]
