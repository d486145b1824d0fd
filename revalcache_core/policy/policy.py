"""RevalCache Policy - Cache Policy Types.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Union

from revalcache_core.exceptions import PolicyError

logger = logging.getLogger(__name__)


class PolicyKind(Enum):
    """Kinds of cache policy."""

    NO_STORE = "no-store"
    FORCE_CACHE = "force-cache"
    REVALIDATE = "revalidate"


@dataclass(frozen=True)
class NoStore:
    """Never cache. Every read fetches and nothing is stored."""

    @property
    def kind(self) -> PolicyKind:
        return PolicyKind.NO_STORE


@dataclass(frozen=True)
class ForceCache:
    """Cache forever, until explicitly invalidated."""

    @property
    def kind(self) -> PolicyKind:
        return PolicyKind.FORCE_CACHE


@dataclass(frozen=True)
class Revalidate:
    """Fresh for ``seconds`` after fetch, stale afterwards.

    Attributes:
        seconds: Revalidate window in seconds
        expire: Optional hard TTL in seconds, at least ``seconds``
    """

    seconds: float
    expire: Optional[float] = None

    @property
    def kind(self) -> PolicyKind:
        return PolicyKind.REVALIDATE


CachePolicy = Union[NoStore, ForceCache, Revalidate]

MAX_TAG_LENGTH = 256
MAX_TAGS = 128


def _check_seconds(name: str, value: object) -> float:
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PolicyError(f"{name} must be a number of seconds, got {value!r}")
    if math.isnan(value) or math.isinf(value):
        raise PolicyError(f"{name} must be finite, got {value!r}")
    if value < 0:
        raise PolicyError(f"{name} must not be negative, got {value!r}")
    return float(value)


def validate_policy(policy: object) -> CachePolicy:
    """Check a policy before any fetch is attempted.

    Args:
        policy: Candidate policy

    Returns:
        The same policy

    Raises:
        PolicyError: If the policy is malformed
    """
    if isinstance(policy, (NoStore, ForceCache)):
        return policy

    if isinstance(policy, Revalidate):
        seconds = _check_seconds("revalidate", policy.seconds)
        if policy.expire is not None:
            expire = _check_seconds("expire", policy.expire)
            if expire < seconds:
                raise PolicyError(
                    f"expire ({expire}s) must not be shorter than revalidate ({seconds}s)"
                )
        return policy

    raise PolicyError(f"Unknown cache policy: {policy!r}")


def validate_tags(tags: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Normalize and check a tag list.

    Args:
        tags: Tags or None

    Returns:
        Frozen set of tags

    Raises:
        PolicyError: If a tag is not a non-empty string
    """
    if tags is None:
        return frozenset()
    if isinstance(tags, str):
        raise PolicyError("tags must be a collection of strings, not a string")

    result = set()
    for tag in tags:
        if not isinstance(tag, str) or not tag:
            raise PolicyError(f"Invalid tag: {tag!r}")
        if len(tag) > MAX_TAG_LENGTH:
            raise PolicyError(f"Tag exceeds {MAX_TAG_LENGTH} characters: {tag[:32]!r}...")
        result.add(tag)

    if len(result) > MAX_TAGS:
        raise PolicyError(f"At most {MAX_TAGS} tags per entry, got {len(result)}")

    return frozenset(result)


def policy_from_options(
    cache: Optional[str] = None,
    revalidate: Union[None, bool, int, float] = None,
) -> CachePolicy:
    """Build a policy from fetch-style options.

    ``cache="no-store"`` wins over any ``revalidate`` value.
    ``revalidate=0`` means no-store, ``revalidate=False`` means cache forever.

    Args:
        cache: "force-cache", "no-store" or None
        revalidate: Seconds, False, or None

    Returns:
        CachePolicy

    Raises:
        PolicyError: On unknown or contradictory options
    """
    if cache is not None and cache not in (PolicyKind.NO_STORE.value, PolicyKind.FORCE_CACHE.value):
        raise PolicyError(f"Unknown cache option: {cache!r}")

    if cache == PolicyKind.NO_STORE.value:
        if revalidate not in (None, False, 0):
            logger.debug(f"Ignoring revalidate={revalidate!r} under no-store")
        return NoStore()

    if revalidate is None or revalidate is False:
        return ForceCache()

    if revalidate is True:
        raise PolicyError("revalidate=True is not a valid option")

    seconds = _check_seconds("revalidate", revalidate)
    if seconds == 0:
        if cache == PolicyKind.FORCE_CACHE.value:
            raise PolicyError("revalidate=0 contradicts cache='force-cache'")
        return NoStore()

    return Revalidate(seconds=seconds)


__all__ = [
    "PolicyKind",
    "NoStore",
    "ForceCache",
    "Revalidate",
    "CachePolicy",
    "validate_policy",
    "validate_tags",
    "policy_from_options",
]
