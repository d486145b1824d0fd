"""RevalCache Cache - Tag-Based Revalidating Cache.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from revalcache_core.cache.entry import CacheEntry, EntryState
from revalcache_core.exceptions import CacheError, ConsistencyViolation
from revalcache_core.fetch.coordinator import FetchCoordinator
from revalcache_core.fetch.locks import KeyLocks
from revalcache_core.index.tags import TagIndex
from revalcache_core.metrics.collector import CacheMetrics, MetricsCollector, Timer
from revalcache_core.policy.engine import Decision, RevalidationPolicyEngine
from revalcache_core.policy.policy import (
    CachePolicy,
    ForceCache,
    NoStore,
    validate_policy,
    validate_tags,
)
from revalcache_core.store.backend import EntryStore
from revalcache_core.store.memory import MemoryStore

logger = logging.getLogger(__name__)

# Invalidations seen while a fill was in flight, weakest first
_MARK_STALE = 1
_MARK_INVALID = 2
_MARK_PURGED = 3

_NO_STORE_FLIGHT = "no-store"


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        name: Cache name, used in thread names and logs
        max_workers: Threads available for background refreshes
        wait_timeout: Seconds a caller waits on another caller's fetch
            (None waits as long as the fetch runs)
        cleanup_interval: Seconds between hard-TTL sweeps once started
        enable_stats: Collect metrics
        default_policy: Policy used when get() is given none
    """

    name: str = "cache"
    max_workers: int = 4
    wait_timeout: Optional[float] = None
    cleanup_interval: float = 60.0
    enable_stats: bool = True
    default_policy: CachePolicy = field(default_factory=ForceCache)


class Cache:
    """Tag-based cache with stale-while-revalidate reads.

    Features:
    - no-store / force-cache / revalidate(N) policies
    - Single-flight fetching per key
    - Background refresh of stale entries on a thread pool
    - Tag and key invalidation, purge, hard TTL
    - Pluggable entry stores (memory, Redis)

    Every mutation of an entry and its tag associations happens inside
    the key's exclusive section, so readers see either the old or the
    new entry and the tag index always matches the store.

    Example:
        cache = Cache(CacheConfig(name="pages"))

        posts = cache.get(
            "GET /api/posts",
            fetch_posts,
            Revalidate(60),
            tags=["posts"],
        )

        # after a mutation
        cache.revalidate_tag("posts")
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[EntryStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache.

        Args:
            config: Cache configuration
            store: Entry store, in-memory by default
            clock: Time source for freshness decisions
        """
        self.config = config or CacheConfig()
        self._store = store if store is not None else MemoryStore()
        self._clock = clock

        self._tags = TagIndex()
        self._engine = RevalidationPolicyEngine()
        self._coordinator = FetchCoordinator(timeout=self.config.wait_timeout)
        self._locks = KeyLocks()
        self._metrics = MetricsCollector()

        # key -> strongest invalidation seen during its in-flight fill
        self._flight_marks: Dict[str, Optional[int]] = {}

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        # keys with a refresh scheduled or running, guarded by the key's lock
        self._refreshing: Set[str] = set()

        self._cleanup_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def tag_index(self) -> TagIndex:
        return self._tags

    @property
    def coordinator(self) -> FetchCoordinator:
        return self._coordinator

    def start(self) -> None:
        """Start the hard-TTL cleanup thread."""
        if self._cleanup_thread is not None:
            return

        self._stop_event.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            daemon=True,
            name=f"Cache-{self.config.name}-cleanup",
        )
        self._cleanup_thread.start()
        logger.info(f"Cache {self.config.name} started")

    def stop(self, wait: bool = True) -> None:
        """Stop background work.

        Args:
            wait: Wait for running refreshes to finish
        """
        self._stop_event.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5.0)
            self._cleanup_thread = None

        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

        logger.info(f"Cache {self.config.name} stopped")

    def get(
        self,
        key: str,
        fetcher: Callable[[], Any],
        policy: Optional[CachePolicy] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Any:
        """Read through the cache.

        Fresh, stale and revalidating entries are returned without
        waiting; a stale entry also schedules one background refresh.
        Misses, invalid entries and no-store reads wait for a single
        shared fetch.

        Args:
            key: Cache key
            fetcher: Zero-argument callable producing the value
            policy: Cache policy, config default if None
            tags: Tags attached to the stored entry

        Returns:
            Cached or fetched value

        Raises:
            PolicyError: Invalid policy or tags, before any fetch
            FetchError: The fetcher raised on a blocking path
            FetchTimeout: Waiting on another caller's fetch timed out
        """
        policy = validate_policy(policy if policy is not None else self.config.default_policy)
        tag_set = validate_tags(tags)

        if isinstance(policy, NoStore):
            if tag_set:
                logger.debug(f"Ignoring tags {sorted(tag_set)} for no-store read of {key!r}")
            self._count("bypasses")
            return self._coordinator.resolve(
                (_NO_STORE_FLIGHT, key),
                lambda: self._fetch(key, fetcher),
                on_attach=lambda: self._count("coalesced"),
            )

        now = self._clock()
        entry = self._load(key, now)
        decision = self._engine.decide(entry, policy, now)

        if decision is Decision.HIT:
            self._count("hits")
            return entry.value

        if decision is Decision.REVALIDATING_HIT:
            self._count("revalidating_hits")
            if not self._refresh_running(key):
                self._schedule_refresh(key, fetcher, policy, tag_set)
            return entry.value

        if decision is Decision.STALE_HIT:
            self._count("stale_hits")
            self._schedule_refresh(key, fetcher, policy, tag_set)
            return entry.value

        self._count("misses")
        return self._coordinator.resolve(
            key,
            lambda: self._fill(key, fetcher, policy, tag_set),
            on_attach=lambda: self._count("coalesced"),
        )

    def revalidate_tag(self, tag: str, hard: bool = False) -> int:
        """Mark every entry carrying a tag for revalidation.

        Soft invalidation makes entries stale: the next read serves the
        old value and refreshes in the background. Hard invalidation makes
        the next read wait for a refetch.

        Args:
            tag: Tag to invalidate
            hard: Mark entries invalid instead of stale

        Returns:
            Number of entries affected
        """
        count = 0
        for key in self._tags.keys_for_tag(tag):
            if self._invalidate(key, hard=hard, tag=tag):
                count += 1

        logger.debug(f"revalidate_tag({tag!r}, hard={hard}) touched {count} entries")
        return count

    def revalidate_path(self, key: str, hard: bool = False) -> bool:
        """Mark a single entry for revalidation.

        Args:
            key: Cache key
            hard: Mark invalid instead of stale

        Returns:
            True if an entry existed
        """
        return self._invalidate(key, hard=hard)

    def purge(self, key: str) -> bool:
        """Delete an entry and its tag associations.

        Args:
            key: Cache key

        Returns:
            True if an entry existed
        """
        with self._locks.hold(key):
            if key in self._flight_marks:
                self._flight_marks[key] = _MARK_PURGED
            existed = self._delete_entry(key)

        if existed:
            self._count("purges")
        return existed

    def clear(self) -> int:
        """Purge every entry.

        Returns:
            Number of entries purged
        """
        count = 0
        for key in self._store.keys():
            if self.purge(key):
                count += 1
        return count

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Stored entry for a key, without any policy logic."""
        return self._store.read(key)

    def keys_for_tag(self, tag: str) -> Set[str]:
        """Keys currently carrying a tag."""
        return self._tags.keys_for_tag(tag)

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        """Stored keys, optionally filtered by glob pattern."""
        return self._store.keys(pattern)

    def wait_for_refreshes(self, timeout: Optional[float] = None) -> bool:
        """Block until scheduled background refreshes settle.

        Args:
            timeout: Seconds to wait, None for no limit

        Returns:
            True if nothing is left pending
        """
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def check_consistency(self) -> None:
        """Verify the tag index against the store.

        Meant for tests and diagnostics on a quiescent cache.

        Raises:
            ConsistencyViolation: If index and store disagree
        """
        problems = []
        stored: Dict[str, FrozenSet[str]] = {}
        for key, entry in self._store.scan():
            stored[key] = entry.tags
            indexed = self._tags.tags_for_key(key)
            if indexed != entry.tags:
                problems.append(
                    f"{key!r}: entry tags {sorted(entry.tags)} != indexed {sorted(indexed)}"
                )

        for key in self._tags.keys():
            if key not in stored:
                problems.append(f"{key!r}: indexed but not stored")

        for tag in self._tags.tags():
            for key in self._tags.keys_for_tag(tag):
                if tag not in stored.get(key, frozenset()):
                    problems.append(f"tag {tag!r} points at {key!r} which lacks it")

        if problems:
            raise ConsistencyViolation(problems)

    def cached(
        self,
        policy: Optional[CachePolicy] = None,
        tags: Optional[Iterable[str]] = None,
        key_builder: Optional[Callable[..., str]] = None,
        key_prefix: Optional[str] = None,
    ):
        """Decorator caching a function's results in this cache.

        See revalcache_core.cache.decorator.cached.
        """
        from revalcache_core.cache.decorator import cached

        return cached(
            self,
            policy=policy,
            tags=tags,
            key_builder=key_builder,
            key_prefix=key_prefix,
        )

    def get_stats(self) -> CacheMetrics:
        """Get cache metrics.

        Returns:
            CacheMetrics snapshot
        """
        self._metrics.set_entry_count(self._store.size())
        return self._metrics.get_metrics()

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def reset_stats(self) -> None:
        self._metrics.reset()

    def _count(self, name: str, amount: int = 1) -> None:
        if self.config.enable_stats:
            self._metrics.increment(name, amount)

    def _fetch(self, key: str, fetcher: Callable[[], Any]) -> Any:
        """Run the fetcher once, recording latency and failures."""
        try:
            if self.config.enable_stats:
                with Timer(self._metrics):
                    value = fetcher()
            else:
                value = fetcher()
        except Exception:
            self._count("fetch_errors")
            raise
        finally:
            self._count("fetches")
        return value

    def _fill(
        self,
        key: str,
        fetcher: Callable[[], Any],
        policy: CachePolicy,
        tags: FrozenSet[str],
    ) -> Any:
        """Fetch a value and commit it. Runs inside the key's single flight."""
        with self._locks.hold(key):
            self._flight_marks[key] = None

        try:
            value = self._fetch(key, fetcher)
        except BaseException:
            with self._locks.hold(key):
                self._flight_marks.pop(key, None)
            raise

        with self._locks.hold(key):
            mark = self._flight_marks.pop(key, None)
            if mark == _MARK_PURGED:
                logger.debug(f"{key!r} was purged during fetch, not storing")
                return value

            state = EntryState.FRESH
            if mark == _MARK_INVALID:
                state = EntryState.INVALID
            elif mark == _MARK_STALE:
                state = EntryState.STALE

            now = self._clock()
            stale_at, expires_at = self._engine.timestamps(policy, now)
            previous = self._store.read(key)
            if previous is None:
                entry = CacheEntry(
                    key=key,
                    value=value,
                    tags=tags,
                    created_at=now,
                    stale_at=stale_at,
                    expires_at=expires_at,
                    state=state,
                )
            else:
                entry = previous.refilled(value, tags, now, stale_at, expires_at, state)
            self._write_entry(key, entry)

        return value

    def _schedule_refresh(
        self,
        key: str,
        fetcher: Callable[[], Any],
        policy: CachePolicy,
        tags: FrozenSet[str],
    ) -> None:
        with self._locks.hold(key):
            current = self._store.read(key)
            if current is None:
                return
            state = current.effective_state(self._clock())
            if self._refresh_running(key):
                return
            if state is EntryState.REVALIDATING:
                # left behind by a refresh that never finished
                logger.debug(f"{key!r} is revalidating with no refresh running")
            elif state is not EntryState.STALE:
                return
            self._write_entry(key, current.with_state(EntryState.REVALIDATING))
            self._refreshing.add(key)

        logger.debug(f"Scheduling background refresh of {key!r}")
        try:
            future = self._get_executor().submit(self._refresh, key, fetcher, policy, tags)
        except RuntimeError as e:
            logger.warning(f"Could not schedule refresh of {key!r}: {e}")
            with self._locks.hold(key):
                self._refreshing.discard(key)
                self._release_revalidating(key)
            return

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_pending)

    def _refresh(
        self,
        key: str,
        fetcher: Callable[[], Any],
        policy: CachePolicy,
        tags: FrozenSet[str],
    ) -> None:
        """Background refresh. Failures go back into the store, not to a caller."""
        error: Optional[CacheError] = None
        try:
            self._coordinator.resolve(key, lambda: self._fill(key, fetcher, policy, tags))
        except CacheError as e:
            error = e
        finally:
            with self._locks.hold(key):
                self._refreshing.discard(key)
                unsettled = self._release_revalidating(key)

        if error is not None:
            self._count("refresh_failures")
            logger.warning(f"Background refresh of {key!r} failed, keeping stale value: {error}")
        elif unsettled:
            self._count("refresh_failures")
            logger.warning(f"Refreshed value for {key!r} was not stored, keeping stale value")
        else:
            self._count("refreshes")

    def _refresh_running(self, key: str) -> bool:
        return key in self._refreshing or self._coordinator.is_in_flight(key)

    def _release_revalidating(self, key: str) -> bool:
        """Put a REVALIDATING entry back to STALE. Caller holds the key's lock.

        Returns:
            True if the entry was still revalidating
        """
        current = self._store.read(key)
        if current is None or current.state is not EntryState.REVALIDATING:
            return False
        self._write_entry(key, current.with_state(EntryState.STALE))
        return True

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix=f"Cache-{self.config.name}-refresh",
                )
            return self._executor

    def _load(self, key: str, now: float) -> Optional[CacheEntry]:
        """Read an entry, dropping it if its hard TTL has passed."""
        entry = self._store.read(key)
        if entry is None or not entry.is_expired_at(now):
            return entry

        with self._locks.hold(key):
            current = self._store.read(key)
            if current is not None and current.is_expired_at(now):
                self._delete_entry(key)
                self._count("expirations")
                return None
            return current

    def _invalidate(self, key: str, hard: bool, tag: Optional[str] = None) -> bool:
        target = EntryState.INVALID if hard else EntryState.STALE
        mark = _MARK_INVALID if hard else _MARK_STALE

        with self._locks.hold(key):
            entry = self._store.read(key)
            if entry is None:
                return False
            if tag is not None and tag not in entry.tags:
                return False

            if key in self._flight_marks:
                self._flight_marks[key] = max(self._flight_marks[key] or 0, mark)

            state = entry.state
            if state is EntryState.INVALID or state is target:
                return True
            if state is EntryState.REVALIDATING and not hard:
                # the running refresh commits as stale
                return True

            self._write_entry(key, entry.with_state(target))

        self._count("invalidations")
        return True

    def _write_entry(self, key: str, entry: CacheEntry) -> bool:
        """Store an entry and sync its tags. Caller holds the key's lock."""
        if not self._store.write(key, entry):
            logger.warning(f"Store refused write of {key!r}")
            return False
        self._tags.replace_tags(key, entry.tags)
        return True

    def _delete_entry(self, key: str) -> bool:
        """Drop an entry and its tags. Caller holds the key's lock."""
        existed = self._store.delete(key)
        self._tags.remove_all_tags(key)
        return existed

    def _cleanup_loop(self) -> None:
        """Background cleanup loop."""
        while not self._stop_event.is_set():
            try:
                self._cleanup_expired()
            except Exception as e:
                logger.error(f"Cleanup error: {e}")

            self._stop_event.wait(self.config.cleanup_interval)

    def _cleanup_expired(self) -> int:
        """Remove entries past their hard TTL.

        Returns:
            Number removed
        """
        count = 0
        now = self._clock()
        for key, entry in list(self._store.scan()):
            if not entry.is_expired_at(now):
                continue
            with self._locks.hold(key):
                current = self._store.read(key)
                if current is not None and current.is_expired_at(now):
                    self._delete_entry(key)
                    self._count("expirations")
                    count += 1
        if count:
            logger.debug(f"Expired {count} entries from {self.config.name}")
        return count

    def __contains__(self, key: str) -> bool:
        return self._store.exists(key)

    def __len__(self) -> int:
        return self._store.size()

    def __enter__(self) -> "Cache":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"Cache(name={self.config.name!r}, entries={self._store.size()})"


__all__ = ["Cache", "CacheConfig"]
