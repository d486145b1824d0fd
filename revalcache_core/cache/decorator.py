"""RevalCache Decorators - Caching and Invalidation Decorators.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import functools
import hashlib
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, TypeVar, Union

from revalcache_core.policy.policy import CachePolicy, validate_policy, validate_tags

if TYPE_CHECKING:
    from revalcache_core.cache.cache import Cache

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

MAX_KEY_LENGTH = 250

TagSpec = Union[Iterable[str], Callable[..., Iterable[str]], None]


def _make_key(
    func: Callable,
    args: tuple,
    kwargs: dict,
    key_prefix: Optional[str] = None,
    key_builder: Optional[Callable[..., str]] = None,
) -> str:
    """Build cache key from a function call.

    Args:
        func: Function being cached
        args: Positional arguments
        kwargs: Keyword arguments
        key_prefix: Optional prefix, defaults to the function's module
        key_builder: Custom key builder

    Returns:
        Cache key string
    """
    if key_builder:
        return key_builder(*args, **kwargs)

    parts = [key_prefix or func.__module__, func.__qualname__]
    parts.extend(repr(arg) for arg in args)
    parts.extend(f"{k}={kwargs[k]!r}" for k in sorted(kwargs))

    key = ":".join(parts)
    if len(key) > MAX_KEY_LENGTH:
        digest = hashlib.sha256(key.encode()).hexdigest()
        key = f"{key_prefix or func.__module__}:{func.__qualname__}:{digest}"
    return key


def cached(
    cache: "Cache",
    policy: Optional[CachePolicy] = None,
    tags: TagSpec = None,
    key_builder: Optional[Callable[..., str]] = None,
    key_prefix: Optional[str] = None,
) -> Callable[[F], F]:
    """Decorator routing calls through Cache.get.

    Args:
        cache: Cache to store results in
        policy: Cache policy, the cache default if None
        tags: Tags for every result, or a callable building them from
            the call arguments
        key_builder: Custom key builder
        key_prefix: Key prefix

    Returns:
        Decorated function

    Example:
        @cached(cache, Revalidate(300), tags=["posts"])
        def list_posts() -> list:
            return api.get("/posts").json()

        @cached(cache, tags=lambda post_id: [f"post:{post_id}"])
        def get_post(post_id: int) -> dict:
            return api.get(f"/posts/{post_id}").json()
    """
    if policy is not None:
        validate_policy(policy)
    if tags is not None and not callable(tags):
        tags = validate_tags(tags)

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            cache_key = _make_key(func, args, kwargs, key_prefix, key_builder)
            call_tags = tags(*args, **kwargs) if callable(tags) else tags
            return cache.get(
                cache_key,
                lambda: func(*args, **kwargs),
                policy,
                tags=call_tags,
            )

        def cache_key(*args, **kwargs) -> str:
            """Get cache key for arguments."""
            return _make_key(func, args, kwargs, key_prefix, key_builder)

        def revalidate(*args, **kwargs) -> bool:
            """Mark the cached result for these arguments stale."""
            return cache.revalidate_path(cache_key(*args, **kwargs))

        def purge(*args, **kwargs) -> bool:
            """Drop the cached result for these arguments."""
            return cache.purge(cache_key(*args, **kwargs))

        wrapper.cache_key = cache_key
        wrapper.revalidate = revalidate
        wrapper.purge = purge
        wrapper.cache = cache
        return wrapper  # type: ignore

    return decorator


def invalidates(
    cache: "Cache",
    *tags: str,
    hard: bool = False,
) -> Callable[[F], F]:
    """Decorator revalidating tags after a mutation succeeds.

    Nothing is invalidated when the wrapped function raises.

    Args:
        cache: Cache to invalidate
        *tags: Tags to revalidate
        hard: Mark entries invalid instead of stale

    Returns:
        Decorated function

    Example:
        @invalidates(cache, "posts")
        def create_post(data: dict) -> dict:
            return api.post("/posts", json=data).json()
    """
    validate_tags(tags)

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            result = func(*args, **kwargs)
            for tag in tags:
                count = cache.revalidate_tag(tag, hard=hard)
                logger.debug(f"{func.__qualname__} revalidated {count} entries tagged {tag!r}")
            return result

        return wrapper  # type: ignore

    return decorator


__all__ = ["cached", "invalidates"]
