"""RevalCache Fetch Coordinator - Single-Flight Fetch Execution.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

from revalcache_core.exceptions import FetchError, FetchTimeout

logger = logging.getLogger(__name__)


@dataclass
class InFlight:
    """Tracks one running fetch and the callers attached to it."""

    key: Hashable
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[FetchError] = None
    interrupt: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    waiters: int = 0

    def outcome(self) -> Any:
        if self.interrupt is not None:
            raise self.interrupt
        if self.error is not None:
            raise self.error
        return self.result


class FetchCoordinator:
    """Runs at most one fetcher per key at a time.

    Pattern:
    - First caller for a key registers a record and runs the fetcher
    - Later callers for the same key wait on the record's event
    - The record leaves the registry before waiters are woken, so the
      next request after settlement starts a new fetch
    - Failures are wrapped once in FetchError and raised to everyone

    A waiter that times out stops waiting; the fetch keeps running.

    Example:
        coordinator = FetchCoordinator()
        value = coordinator.resolve("posts", lambda: load_posts())
    """

    def __init__(self, timeout: Optional[float] = None):
        """Initialize the coordinator.

        Args:
            timeout: Default seconds a waiter waits, None for no limit
        """
        self._in_flight: Dict[Hashable, InFlight] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._coalesced = 0

    def resolve(
        self,
        key: Hashable,
        fetcher: Callable[[], Any],
        timeout: Optional[float] = None,
        on_attach: Optional[Callable[[], None]] = None,
    ) -> Any:
        """Join the in-flight fetch for a key or start one.

        Args:
            key: Flight key
            fetcher: Zero-argument callable producing the value
            timeout: Seconds to wait when joining, overrides the default
            on_attach: Called when this caller joins an existing flight

        Returns:
            The value produced by the single execution

        Raises:
            FetchError: The fetcher raised
            FetchTimeout: Waiting for another caller's fetch timed out
        """
        with self._lock:
            flight = self._in_flight.get(key)
            if flight is not None:
                flight.waiters += 1
                self._coalesced += 1
                is_initiator = False
                logger.debug(f"Coalescing fetch for {key!r} (waiters: {flight.waiters})")
            else:
                flight = InFlight(key=key)
                self._in_flight[key] = flight
                is_initiator = True
                logger.debug(f"Initiating fetch for {key!r}")

        if is_initiator:
            return self._run(flight, fetcher)

        if on_attach is not None:
            on_attach()

        wait = timeout if timeout is not None else self._timeout
        if not flight.event.wait(timeout=wait):
            logger.warning(f"Timeout waiting for in-flight fetch of {key!r}")
            raise FetchTimeout(key, wait)

        return flight.outcome()

    def _run(self, flight: InFlight, fetcher: Callable[[], Any]) -> Any:
        try:
            flight.result = fetcher()
        except FetchError as e:
            flight.error = e
        except Exception as e:
            flight.error = FetchError(self._describe(flight.key), e)
            flight.error.__cause__ = e
            logger.warning(f"Fetch failed for {flight.key!r}: {e}")
        except BaseException as e:
            # re-raised to every waiter as well
            flight.interrupt = e
            raise
        finally:
            with self._lock:
                if self._in_flight.get(flight.key) is flight:
                    del self._in_flight[flight.key]
            flight.event.set()

        return flight.outcome()

    @staticmethod
    def _describe(key: Hashable) -> str:
        if isinstance(key, tuple) and key:
            return str(key[-1])
        return str(key)

    def is_in_flight(self, key: Hashable) -> bool:
        """Check whether a fetch is running for a key."""
        with self._lock:
            return key in self._in_flight

    @property
    def active_flights(self) -> int:
        """Number of currently running fetches."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._lock:
            keys: List[Hashable] = list(self._in_flight.keys())
            return {
                "active_flights": len(keys),
                "active_keys": keys,
                "coalesced": self._coalesced,
            }

    def __repr__(self) -> str:
        return f"FetchCoordinator(active={self.active_flights})"


__all__ = ["FetchCoordinator", "InFlight"]
