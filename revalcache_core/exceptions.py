"""RevalCache Exceptions - Error Taxonomy.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class CacheError(Exception):
    """Base class for all cache errors."""


class FetchError(CacheError):
    """A user-supplied fetcher raised.

    One instance is shared by every caller attached to the same
    single-flight execution.

    Attributes:
        key: Cache key being fetched
        cause: Original exception raised by the fetcher
    """

    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Fetch failed for {key!r}: {cause!r}")


class FetchTimeout(CacheError, TimeoutError):
    """A caller stopped waiting for an in-flight fetch.

    The fetch itself keeps running; other waiters still receive its result.
    """

    def __init__(self, key: Any, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Gave up waiting for {key!r} after {timeout}s")


class PolicyError(CacheError, ValueError):
    """Invalid policy or tag configuration."""


class ConsistencyViolation(CacheError):
    """Tag index and entry store disagree.

    Attributes:
        problems: Human readable descriptions of each mismatch
    """

    def __init__(self, problems: Iterable[str], message: Optional[str] = None):
        self.problems = list(problems)
        super().__init__(message or "; ".join(self.problems))


__all__ = [
    "CacheError",
    "FetchError",
    "FetchTimeout",
    "PolicyError",
    "ConsistencyViolation",
]
