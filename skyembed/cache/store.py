"""In-memory TTL cache.

Provides:
- Per-entry TTL in milliseconds, evaluated lazily on read
- Explicit delete, prefix delete and full clear
- A global enabled switch (get/put become no-ops, deletes still work)
- `wrap()` for read-through caching with a per-call bypass flag

There is no locking: the store lives in a single asyncio process and two
concurrent misses for the same key may both run their producer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class CacheEntry:
    """Cached value with its insertion time."""

    value: Any
    inserted_at: float
    ttl_ms: int
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: float) -> bool:
        return now > self.inserted_at + self.ttl_ms


class CacheStore:
    """Process-wide key/value store with per-entry expiry."""

    def __init__(
        self,
        default_ttl_ms: int = 3_600_000,
        enabled: bool = True,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.default_ttl_ms = default_ttl_ms
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

        # Metrics
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, dropping it if it has expired."""
        if not self.enabled:
            return None

        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            logger.debug("cache_miss", key=key)
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            logger.debug("cache_expired", key=key)
            return None

        self.hits += 1
        logger.debug("cache_hit", key=key)
        return entry

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def put(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        if not self.enabled:
            return
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl_ms=ttl)
        logger.debug("cache_put", key=key, ttl_ms=ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix; returns the count removed."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.info("cache_prefix_deleted", prefix=prefix, count=len(keys))
        return len(keys)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache_cleared", count=count)

    async def wrap(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl_ms: Optional[int] = None,
        bypass: bool = False,
    ) -> Any:
        """Return the cached value for key, or produce, store and return it.

        With `bypass` the read is skipped but the fresh value is still stored.
        """
        if not bypass:
            entry = self.get_entry(key)
            if entry is not None:
                return entry.value
        else:
            logger.debug("cache_bypassed", key=key)

        value = await producer()
        self.put(key, value, ttl_ms)
        return value

    def stats(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
        }


def feed_key(handle: str, limit: int, cursor: Optional[str]) -> str:
    return f"feed:{handle.lower()}:{limit}:{cursor or ''}"


def authored_key(handle: str, limit: int, cursor: Optional[str]) -> str:
    return f"user-posts:{handle.lower()}:{limit}:{cursor or ''}"


def actor_prefixes(handle: str) -> tuple[str, str]:
    """Prefixes covering every cached feed page of one actor."""
    handle = handle.lower()
    return f"feed:{handle}:", f"user-posts:{handle}:"
