"""Response and feed caching."""

from .store import CacheEntry, CacheStore, actor_prefixes, authored_key, feed_key

__all__ = ["CacheEntry", "CacheStore", "actor_prefixes", "authored_key", "feed_key"]
