"""Shared fixtures for cache tests.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading
import time

import pytest

from revalcache_core.cache.cache import Cache, CacheConfig


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Fetcher:
    """Fetcher returning scripted results and counting calls.

    Results are consumed in order; the last one repeats. Exceptions in
    the script are raised. When ``gate`` is given, every call after the
    first ``free_calls`` blocks until the gate is set.
    """

    def __init__(self, *results, gate=None, free_calls=0):
        self.results = list(results)
        self.calls = 0
        self.gate = gate
        self.free_calls = free_calls
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            call = self.calls
            result = self.results[min(call - 1, len(self.results) - 1)]

        if self.gate is not None and call > self.free_calls:
            self.entered.set()
            assert self.gate.wait(timeout=5), "gate never opened"

        if isinstance(result, Exception):
            raise result
        return result


def wait_until(predicate, timeout=5.0):
    """Poll until predicate() is truthy."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    cache = Cache(CacheConfig(name="test"), clock=clock)
    yield cache
    cache.stop()


@pytest.fixture
def make_fetcher():
    return Fetcher


@pytest.fixture
def until():
    return wait_until
