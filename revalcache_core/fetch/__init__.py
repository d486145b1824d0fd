"""Fetch module - Single-flight fetch execution and per-key locking."""

from revalcache_core.fetch.coordinator import FetchCoordinator, InFlight
from revalcache_core.fetch.locks import KeyLocks

__all__ = ["FetchCoordinator", "InFlight", "KeyLocks"]
