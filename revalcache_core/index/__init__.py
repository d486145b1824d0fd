"""Index module - Tag reverse index."""

from revalcache_core.index.tags import TagIndex

__all__ = ["TagIndex"]
