"""Tests for Cache class.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading

import pytest

from revalcache_core.cache.cache import Cache, CacheConfig
from revalcache_core.cache.entry import CacheEntry, EntryState
from revalcache_core.exceptions import FetchError, FetchTimeout, PolicyError
from revalcache_core.policy.policy import ForceCache, NoStore, Revalidate
from revalcache_core.store.memory import MemoryStore


class TestReads:
    """Tests for the read path."""

    def test_miss_then_hit(self, cache, make_fetcher):
        """Test first read fetches, second is served from cache."""
        fetch = make_fetcher("value")

        assert cache.get("key", fetch, ForceCache()) == "value"
        assert cache.get("key", fetch, ForceCache()) == "value"
        assert fetch.calls == 1

    def test_force_cache_never_goes_stale(self, cache, clock, make_fetcher):
        """Test force-cache entries stay fresh indefinitely."""
        fetch = make_fetcher("v1", "v2")

        cache.get("key", fetch, ForceCache())
        clock.advance(10 ** 9)

        assert cache.get("key", fetch, ForceCache()) == "v1"
        assert fetch.calls == 1
        assert cache.peek("key").state is EntryState.FRESH

    def test_default_policy_is_force_cache(self, cache, make_fetcher):
        """Test get without a policy caches permanently."""
        fetch = make_fetcher("value")

        cache.get("key", fetch)

        assert cache.peek("key").is_permanent

    def test_no_store_always_fetches(self, cache, make_fetcher):
        """Test no-store reads bypass the store."""
        fetch = make_fetcher("a", "b")

        assert cache.get("key", fetch, NoStore(), tags=["t"]) == "a"
        assert cache.get("key", fetch, NoStore(), tags=["t"]) == "b"

        assert fetch.calls == 2
        assert cache.peek("key") is None
        assert cache.keys_for_tag("t") == set()

    def test_no_store_does_not_touch_stored_entry(self, cache, make_fetcher):
        """Test no-store read leaves an existing entry alone."""
        cache.get("key", make_fetcher("cached"), ForceCache())

        assert cache.get("key", make_fetcher("live"), NoStore()) == "live"
        assert cache.peek("key").value == "cached"

    def test_policy_error_before_fetch(self, cache, make_fetcher):
        """Test invalid policies fail before the fetcher runs."""
        fetch = make_fetcher("value")

        with pytest.raises(PolicyError):
            cache.get("key", fetch, Revalidate(-1))
        with pytest.raises(PolicyError):
            cache.get("key", fetch, ForceCache(), tags=[""])

        assert fetch.calls == 0

    def test_fetch_error_propagates_and_stores_nothing(self, cache, make_fetcher):
        """Test a failed miss raises FetchError and caches nothing."""
        boom = ValueError("boom")
        fetch = make_fetcher(boom)

        with pytest.raises(FetchError) as excinfo:
            cache.get("key", fetch, ForceCache())

        assert excinfo.value.cause is boom
        assert excinfo.value.__cause__ is boom
        assert cache.peek("key") is None

    def test_hard_ttl_expiry(self, cache, clock, make_fetcher):
        """Test entries past expire are dropped and refetched synchronously."""
        fetch = make_fetcher("v1", "v2")
        policy = Revalidate(10, expire=20)

        cache.get("key", fetch, policy, tags=["t"])
        clock.advance(25)

        assert cache.get("key", fetch, policy, tags=["t"]) == "v2"
        assert fetch.calls == 2
        assert cache.get_stats().expirations == 1
        cache.check_consistency()

    def test_cleanup_sweep_removes_expired(self, cache, clock, make_fetcher):
        """Test the cleanup sweep drops expired entries and their tags."""
        cache.get("old", make_fetcher("x"), Revalidate(1, expire=2), tags=["t"])
        cache.get("keep", make_fetcher("y"), ForceCache(), tags=["t"])
        clock.advance(5)

        assert cache._cleanup_expired() == 1
        assert "old" not in cache
        assert cache.keys_for_tag("t") == {"keep"}


class TestStaleWhileRevalidate:
    """Tests for stale reads and background refresh."""

    def test_revalidate_timeline(self, cache, clock, make_fetcher):
        """Test fresh, stale, and refreshed reads over time."""
        fetch_a = make_fetcher("V1", "V2")
        policy = Revalidate(60)

        # t=0 miss
        assert cache.get("A", fetch_a, policy, tags=["posts"]) == "V1"
        assert fetch_a.calls == 1

        # t=30 fresh
        clock.advance(30)
        assert cache.get("A", fetch_a, policy, tags=["posts"]) == "V1"
        assert fetch_a.calls == 1

        # t=90 stale, served immediately, refreshed in background
        clock.advance(60)
        assert cache.get("A", fetch_a, policy, tags=["posts"]) == "V1"
        assert cache.wait_for_refreshes(timeout=5)
        assert fetch_a.calls == 2

        # t=91 refreshed value
        clock.advance(1)
        assert cache.get("A", fetch_a, policy, tags=["posts"]) == "V2"
        assert fetch_a.calls == 2

    def test_stale_read_does_not_block(self, cache, clock, make_fetcher):
        """Test stale reads return while the refresh is still running."""
        gate = threading.Event()
        fetch = make_fetcher("old", "new", gate=gate, free_calls=1)

        cache.get("key", fetch, Revalidate(1))
        clock.advance(2)

        assert cache.get("key", fetch, Revalidate(1)) == "old"
        assert fetch.entered.wait(timeout=5)
        assert cache.peek("key").state is EntryState.REVALIDATING

        # still in flight, still served without waiting
        assert cache.get("key", fetch, Revalidate(1)) == "old"

        gate.set()
        assert cache.wait_for_refreshes(timeout=5)
        assert cache.get("key", fetch, Revalidate(1)) == "new"
        assert fetch.calls == 2

    def test_single_refresh_while_revalidating(self, cache, clock, make_fetcher):
        """Test repeated stale reads trigger one refresh."""
        gate = threading.Event()
        fetch = make_fetcher("old", "new", gate=gate, free_calls=1)

        cache.get("key", fetch, Revalidate(1))
        clock.advance(2)

        for _ in range(5):
            assert cache.get("key", fetch, Revalidate(1)) == "old"

        gate.set()
        assert cache.wait_for_refreshes(timeout=5)
        assert fetch.calls == 2
        assert cache.get_stats().stale_hits == 1
        assert cache.get_stats().revalidating_hits == 4

    def test_failed_refresh_keeps_value(self, cache, clock, make_fetcher):
        """Test a failing background refresh keeps serving the old value."""
        fetch = make_fetcher("good", RuntimeError("upstream down"))

        cache.get("key", fetch, Revalidate(1))
        clock.advance(2)

        assert cache.get("key", fetch, Revalidate(1)) == "good"
        assert cache.wait_for_refreshes(timeout=5)

        entry = cache.peek("key")
        assert entry.state is EntryState.STALE
        assert entry.value == "good"
        assert cache.get("key", fetch, Revalidate(1)) == "good"
        assert cache.wait_for_refreshes(timeout=5)
        assert cache.get_stats().refresh_failures == 2

    def test_refused_commit_reverts_to_stale(self, clock, make_fetcher):
        """Test a refresh the store refuses to commit lets later reads refresh again."""

        class RefillRefusingStore(MemoryStore):
            def write(self, key, entry):
                if entry.version > 1:
                    return False
                return super().write(key, entry)

        cache = Cache(CacheConfig(name="refusing"), store=RefillRefusingStore(), clock=clock)
        fetch = make_fetcher("v1", "v2", "v3")
        try:
            cache.get("key", fetch, Revalidate(1))
            clock.advance(100)
            assert cache.get("key", fetch, Revalidate(1)) == "v1"
            assert cache.wait_for_refreshes(timeout=5)

            entry = cache.peek("key")
            assert entry.state is EntryState.STALE
            assert entry.value == "v1"
            assert cache.get_stats().refresh_failures == 1

            clock.advance(100)
            assert cache.get("key", fetch, Revalidate(1)) == "v1"
            assert cache.wait_for_refreshes(timeout=5)
            assert fetch.calls == 3
            assert cache.peek("key").state is EntryState.STALE
        finally:
            cache.stop()

    def test_leftover_revalidating_entry_is_refreshed(self, cache, clock, make_fetcher):
        """Test a stored REVALIDATING entry with no refresh running gets refreshed."""
        cache.store.write(
            "key",
            CacheEntry(
                key="key",
                value="old",
                created_at=clock() - 10,
                stale_at=clock() - 5,
                state=EntryState.REVALIDATING,
            ),
        )
        fetch = make_fetcher("new")

        assert cache.get("key", fetch, Revalidate(5)) == "old"
        assert cache.wait_for_refreshes(timeout=5)

        entry = cache.peek("key")
        assert fetch.calls == 1
        assert entry.value == "new"
        assert entry.state is EntryState.FRESH
        assert cache.get_stats().refreshes == 1

    def test_refresh_not_scheduled_after_shutdown(self, cache, clock, make_fetcher):
        """Test a stale read racing shutdown keeps its value and leaves the entry stale."""

        class ClosedExecutor:
            def submit(self, *args, **kwargs):
                raise RuntimeError("cannot schedule new futures after shutdown")

            def shutdown(self, wait=True):
                pass

        fetch = make_fetcher("v1", "v2")
        cache.get("key", fetch, Revalidate(1))
        clock.advance(2)
        cache._executor = ClosedExecutor()

        assert cache.get("key", fetch, Revalidate(1)) == "v1"
        assert cache.peek("key").state is EntryState.STALE
        assert "key" not in cache._refreshing
        assert fetch.calls == 1

    def test_refresh_replaces_tags(self, cache, clock, make_fetcher):
        """Test a refresh stores the triggering call's tags."""
        fetch = make_fetcher("v1", "v2")

        cache.get("key", fetch, Revalidate(1), tags=["old"])
        clock.advance(2)
        cache.get("key", fetch, Revalidate(1), tags=["new"])
        assert cache.wait_for_refreshes(timeout=5)

        assert cache.keys_for_tag("old") == set()
        assert cache.keys_for_tag("new") == {"key"}
        assert cache.peek("key").version == 2
        cache.check_consistency()


class TestSingleFlight:
    """Tests for concurrent miss coalescing."""

    def _run_concurrently(self, cache, fetch, count, until):
        results = [None] * count
        errors = [None] * count

        def worker(i):
            try:
                results[i] = cache.get("key", fetch, Revalidate(60))
            except Exception as e:
                errors[i] = e

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()

        assert fetch.entered.wait(timeout=5)
        assert until(lambda: cache.coordinator.get_stats()["coalesced"] == count - 1)
        fetch.gate.set()

        for t in threads:
            t.join(timeout=5)
        return results, errors

    def test_concurrent_misses_fetch_once(self, cache, make_fetcher, until):
        """Test N concurrent misses run the fetcher once."""
        fetch = make_fetcher({"id": 1}, gate=threading.Event())

        results, errors = self._run_concurrently(cache, fetch, 10, until)

        assert fetch.calls == 1
        assert errors == [None] * 10
        assert all(r is results[0] for r in results)
        assert cache.get_stats().coalesced == 9

    def test_concurrent_failure_shared(self, cache, make_fetcher, until):
        """Test all waiters receive the same FetchError."""
        fetch = make_fetcher(ConnectionError("reset"), gate=threading.Event())

        results, errors = self._run_concurrently(cache, fetch, 6, until)

        assert fetch.calls == 1
        assert all(isinstance(e, FetchError) for e in errors)
        assert all(e is errors[0] for e in errors)
        assert cache.peek("key") is None

    def test_waiter_timeout_does_not_cancel(self, clock, make_fetcher):
        """Test an abandoning caller leaves the fetch running."""
        cache = Cache(CacheConfig(wait_timeout=0.05), clock=clock)
        gate = threading.Event()
        fetch = make_fetcher("value", gate=gate)
        result = []

        initiator = threading.Thread(
            target=lambda: result.append(cache.get("key", fetch, ForceCache()))
        )
        initiator.start()
        assert fetch.entered.wait(timeout=5)

        with pytest.raises(FetchTimeout):
            cache.get("key", fetch, ForceCache())

        gate.set()
        initiator.join(timeout=5)

        assert result == ["value"]
        assert fetch.calls == 1
        assert cache.peek("key").value == "value"
        cache.stop()

    def test_next_request_after_settle_fetches_again(self, cache, make_fetcher):
        """Test the registry is cleared once a no-store fetch settles."""
        fetch = make_fetcher("a", "b")

        assert cache.get("key", fetch, NoStore()) == "a"
        assert not cache.coordinator.is_in_flight(("no-store", "key"))
        assert cache.get("key", fetch, NoStore()) == "b"


class TestInvalidation:
    """Tests for revalidate_tag, revalidate_path and purge."""

    def test_revalidate_tag_marks_stale(self, cache, clock, make_fetcher):
        """Test tag revalidation turns a fresh entry stale."""
        gate = threading.Event()
        fetch = make_fetcher("V1", "V2", gate=gate, free_calls=1)
        policy = Revalidate(60)

        cache.get("A", fetch, policy, tags=["posts"])
        cache.get("B", make_fetcher("other"), policy, tags=["users"])
        clock.advance(5)

        assert cache.revalidate_tag("posts") == 1
        assert cache.peek("A").state is EntryState.STALE
        assert cache.peek("B").state is EntryState.FRESH

        assert cache.get("A", fetch, policy, tags=["posts"]) == "V1"
        assert cache.get("A", fetch, policy, tags=["posts"]) == "V1"
        gate.set()
        assert cache.wait_for_refreshes(timeout=5)

        assert fetch.calls == 2
        assert cache.get("A", fetch, policy, tags=["posts"]) == "V2"

    def test_revalidate_tag_idempotent(self, cache, make_fetcher):
        """Test revalidating twice equals revalidating once."""
        fetch = make_fetcher("v1", "v2")
        cache.get("A", fetch, ForceCache(), tags=["posts"])

        cache.revalidate_tag("posts")
        first = cache.peek("A")
        cache.revalidate_tag("posts")

        assert cache.peek("A") == first
        assert first.state is EntryState.STALE

        cache.get("A", fetch, ForceCache(), tags=["posts"])
        assert cache.wait_for_refreshes(timeout=5)
        assert fetch.calls == 2

    def test_revalidate_unknown_tag(self, cache):
        """Test revalidating an unused tag is a no-op."""
        assert cache.revalidate_tag("nothing") == 0

    def test_hard_revalidate_blocks_next_read(self, cache, make_fetcher):
        """Test hard invalidation forces a synchronous refetch."""
        fetch = make_fetcher("v1", "v2")
        cache.get("A", fetch, ForceCache(), tags=["posts"])

        assert cache.revalidate_tag("posts", hard=True) == 1
        assert cache.peek("A").state is EntryState.INVALID

        assert cache.get("A", fetch, ForceCache(), tags=["posts"]) == "v2"
        assert cache.peek("A").state is EntryState.FRESH

    def test_soft_revalidate_keeps_invalid(self, cache, make_fetcher):
        """Test soft revalidation does not downgrade an invalid entry."""
        cache.get("A", make_fetcher("v1"), ForceCache(), tags=["t"])
        cache.revalidate_tag("t", hard=True)
        cache.revalidate_tag("t")

        assert cache.peek("A").state is EntryState.INVALID

    def test_revalidate_path(self, cache, make_fetcher):
        """Test single-key revalidation."""
        cache.get("/blog", make_fetcher("page"), ForceCache())

        assert cache.revalidate_path("/blog")
        assert cache.peek("/blog").state is EntryState.STALE
        assert not cache.revalidate_path("/missing")

    def test_purge(self, cache, make_fetcher):
        """Test purge deletes entry and tags, next read is a miss."""
        fetch = make_fetcher("v1", "v2")
        cache.get("A", fetch, ForceCache(), tags=["posts", "home"])

        assert cache.purge("A")
        assert cache.peek("A") is None
        assert cache.keys_for_tag("posts") == set()
        assert cache.keys_for_tag("home") == set()
        assert not cache.purge("A")

        assert cache.get("A", fetch, ForceCache()) == "v2"
        assert fetch.calls == 2

    def test_purge_during_fetch_skips_store(self, cache, make_fetcher):
        """Test a fetch that raced a purge is returned but not stored."""
        gate = threading.Event()
        fetch = make_fetcher("value", gate=gate)
        result = []

        t = threading.Thread(target=lambda: result.append(cache.get("A", fetch, ForceCache())))
        t.start()
        assert fetch.entered.wait(timeout=5)

        cache.purge("A")
        gate.set()
        t.join(timeout=5)

        assert result == ["value"]
        assert cache.peek("A") is None

    def test_revalidate_during_refresh_commits_stale(self, cache, clock, make_fetcher):
        """Test a refresh that raced a tag revalidation lands stale."""
        gate = threading.Event()
        fetch = make_fetcher("v1", "v2", gate=gate, free_calls=1)

        cache.get("A", fetch, Revalidate(1), tags=["posts"])
        clock.advance(2)
        cache.get("A", fetch, Revalidate(1), tags=["posts"])
        assert fetch.entered.wait(timeout=5)

        cache.revalidate_tag("posts")
        assert cache.peek("A").state is EntryState.REVALIDATING

        gate.set()
        assert cache.wait_for_refreshes(timeout=5)

        entry = cache.peek("A")
        assert entry.value == "v2"
        assert entry.state is EntryState.STALE

    def test_clear(self, cache, make_fetcher):
        """Test clear purges everything."""
        cache.get("a", make_fetcher(1), ForceCache(), tags=["t"])
        cache.get("b", make_fetcher(2), ForceCache(), tags=["t"])

        assert cache.clear() == 2
        assert len(cache) == 0
        assert cache.keys_for_tag("t") == set()


class TestTagConsistency:
    """Tests for tag index and store agreement."""

    def test_consistent_after_mixed_operations(self, cache, clock, make_fetcher):
        """Test index matches entries across a sequence of operations."""
        cache.get("a", make_fetcher(1), Revalidate(5), tags=["x", "y"])
        cache.get("b", make_fetcher(2), ForceCache(), tags=["y"])
        cache.get("c", make_fetcher(3), ForceCache())
        cache.check_consistency()

        cache.revalidate_tag("y")
        cache.check_consistency()

        cache.purge("a")
        cache.check_consistency()
        assert cache.keys_for_tag("x") == set()
        assert cache.keys_for_tag("y") == {"b"}

        clock.advance(10)
        cache.get("b", make_fetcher(4), ForceCache(), tags=["z"])
        assert cache.wait_for_refreshes(timeout=5)
        cache.check_consistency()
        assert cache.keys_for_tag("y") == set()
        assert cache.keys_for_tag("z") == {"b"}

    def test_concurrent_operations_stay_consistent(self, cache, make_fetcher):
        """Test thread safety of reads, invalidations and purges."""
        errors = []

        def worker(n):
            try:
                for i in range(50):
                    key = f"key-{i % 5}"
                    cache.get(key, make_fetcher(n), ForceCache(), tags=[f"t{n % 3}", "all"])
                    if i % 7 == 0:
                        cache.revalidate_tag("all")
                    if i % 11 == 0:
                        cache.purge(key)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.wait_for_refreshes(timeout=5)
        assert not errors
        cache.check_consistency()


class TestLifecycle:
    """Tests for start/stop and context management."""

    def test_context_manager(self, make_fetcher):
        """Test context manager starts and stops the cache."""
        with Cache(CacheConfig(name="ctx", cleanup_interval=0.01)) as cache:
            assert cache._cleanup_thread is not None
            assert cache.get("key", make_fetcher("value")) == "value"
        assert cache._cleanup_thread is None

    def test_stats(self, cache, make_fetcher):
        """Test statistics."""
        fetch = make_fetcher("value")

        cache.get("key", fetch)
        cache.get("key", fetch)
        cache.get("other", fetch, NoStore())

        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.hits == 1
        assert stats.bypasses == 1
        assert stats.fetches == 2
        assert stats.entry_count == 1
        assert stats.hit_rate == pytest.approx(0.5)

    def test_stats_disabled(self, clock, make_fetcher):
        """Test counters stay at zero when stats are off."""
        cache = Cache(CacheConfig(enable_stats=False), clock=clock)
        cache.get("key", make_fetcher("value"))

        stats = cache.get_stats()
        assert stats.misses == 0
        assert stats.fetches == 0
        assert stats.fetch_latency_avg_ms == 0.0
        assert len(cache.metrics._latencies) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
