"""Tests for the TTL cache."""

import pytest

from skyembed.cache import CacheStore, actor_prefixes, authored_key, feed_key


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(1_000.0)


@pytest.fixture
def cache(clock):
    return CacheStore(default_ttl_ms=1_000, clock=clock)


class TestCacheStore:
    """Tests for get/put/expiry."""

    def test_put_and_get(self, cache):
        cache.put("k", {"a": 1})
        assert cache.get("k") == {"a": 1}

    def test_missing_key(self, cache):
        assert cache.get("nope") is None
        assert cache.misses == 1

    def test_entry_visible_until_ttl_boundary(self, cache, clock):
        """Entry is still visible exactly at inserted_at + ttl."""
        cache.put("k", "v", ttl_ms=500)
        clock.now += 500
        assert cache.get("k") == "v"

    def test_entry_expires_lazily(self, cache, clock):
        """Expired entries are dropped on read."""
        cache.put("k", "v", ttl_ms=500)
        clock.now += 501
        assert len(cache) == 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_default_ttl_used(self, cache, clock):
        cache.put("k", "v")
        clock.now += 999
        assert cache.get("k") == "v"
        clock.now += 2
        assert cache.get("k") is None

    def test_delete(self, cache):
        cache.put("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_delete_prefix_only_removes_matching_keys(self, cache):
        cache.put("feed:alice.example:10:", 1)
        cache.put("feed:alice.example:10:c2", 2)
        cache.put("feed:bob.example:10:", 3)
        cache.put("user-posts:alice.example:10:", 4)

        removed = cache.delete_prefix("feed:alice.example:")

        assert removed == 2
        assert cache.get("feed:bob.example:10:") == 3
        assert cache.get("user-posts:alice.example:10:") == 4

    def test_clear(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_stats(self, cache):
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats == {"enabled": True, "entries": 1, "hits": 1, "misses": 1}


class TestDisabledCache:
    """A disabled cache ignores reads and writes but honours deletes."""

    def test_put_is_noop(self, clock):
        cache = CacheStore(enabled=False, clock=clock)
        cache.put("k", "v")
        assert len(cache) == 0
        assert cache.get("k") is None

    def test_delete_and_clear_still_work(self, cache):
        cache.put("feed:a:1:", 1)
        cache.put("feed:b:1:", 2)
        cache.put("x", 3)
        cache.enabled = False

        assert cache.delete("x") is True
        assert cache.delete_prefix("feed:a:") == 1
        cache.clear()
        assert len(cache) == 0


class TestWrap:
    """Tests for read-through wrap()."""

    @pytest.mark.asyncio
    async def test_producer_called_once(self, cache):
        calls = []

        async def produce():
            calls.append(1)
            return "fresh"

        assert await cache.wrap("k", produce) == "fresh"
        assert await cache.wrap("k", produce) == "fresh"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_bypass_skips_read_but_writes(self, cache):
        cache.put("k", "stale")

        async def produce():
            return "fresh"

        assert await cache.wrap("k", produce, bypass=True) == "fresh"
        assert cache.get("k") == "fresh"

    @pytest.mark.asyncio
    async def test_failed_producer_not_cached(self, cache):
        async def produce():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await cache.wrap("k", produce)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_custom_ttl(self, cache, clock):
        async def produce():
            return "v"

        await cache.wrap("k", produce, ttl_ms=10)
        clock.now += 11
        assert cache.get("k") is None


class TestKeys:
    def test_feed_key(self):
        assert feed_key("alice.example", 10, None) == "feed:alice.example:10:"
        assert feed_key("alice.example", 10, "c1") == "feed:alice.example:10:c1"

    def test_authored_key(self):
        assert authored_key("alice.example", 5, None) == "user-posts:alice.example:5:"

    def test_actor_prefixes_cover_both_key_kinds(self):
        prefixes = actor_prefixes("alice.example")
        assert feed_key("alice.example", 10, "c").startswith(prefixes[0])
        assert authored_key("alice.example", 10, None).startswith(prefixes[1])
        assert not feed_key("alice.example.net", 10, None).startswith(prefixes[0])

    def test_keys_ignore_handle_case(self):
        assert feed_key("Alice.Example", 10, "C1") == "feed:alice.example:10:C1"
        assert authored_key("ALICE.EXAMPLE", 5, None) == authored_key("alice.example", 5, None)
        assert feed_key("Alice.Example", 10, None).startswith(actor_prefixes("ALICE.example")[0])
