"""Tests for FeedFetcher."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from skyembed.bluesky.errors import NotFoundError, UpstreamUnavailableError
from skyembed.bluesky.fallbacks import DegradedPolicy
from skyembed.bluesky.models import FeedPage, Profile
from skyembed.cache import CacheStore, authored_key, feed_key
from skyembed.feed import FeedFetcher
from skyembed.render import PostRenderer

from .conftest import make_post_view


def make_client(**overrides) -> MagicMock:
    client = MagicMock()
    client.fetch_author_feed = AsyncMock(return_value=FeedPage(feed=[], cursor=None))
    client.fetch_timeline = AsyncMock(return_value=FeedPage(feed=[], cursor=None))
    client.fetch_authored_only = AsyncMock(return_value=FeedPage(feed=[], cursor=None))
    client.fetch_profile = AsyncMock(return_value=Profile(handle="alice.example"))
    client.known_aliases = MagicMock(side_effect=lambda actor: {actor})
    for name, value in overrides.items():
        setattr(client, name, value)
    return client


@pytest.fixture
def cache():
    return CacheStore(default_ttl_ms=60_000)


@pytest.fixture
def renderer():
    return PostRenderer()


def make_fetcher(client, cache, renderer, **kwargs) -> FeedFetcher:
    kwargs.setdefault("home_handle", "me.example")
    kwargs.setdefault("profile_pause", 0)
    return FeedFetcher(client=client, cache=cache, renderer=renderer, **kwargs)


class TestGetFeed:
    """Caching and fallback chain for author feeds."""

    @pytest.mark.asyncio
    async def test_fetches_and_caches(self, cache, renderer, author_feed):
        client = make_client(fetch_author_feed=AsyncMock(return_value=author_feed))
        fetcher = make_fetcher(client, cache, renderer)

        page = await fetcher.get_feed("@alice.example", limit=3)

        assert len(page.feed) == 3
        assert page.cursor == "next-page"
        assert cache.get(feed_key("alice.example", 3, None)) == page
        client.fetch_author_feed.assert_awaited_once_with("alice.example", limit=3, cursor=None)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstream(self, cache, renderer):
        cached = FeedPage(feed=[{"post": {"text": "cached"}}], cursor="c")
        cache.put(feed_key("alice.example", 10, None), cached)
        client = make_client()
        fetcher = make_fetcher(client, cache, renderer)

        assert await fetcher.get_feed("alice.example") is cached
        client.fetch_author_feed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bypass_never_reads_cache_but_writes(self, renderer, author_feed):
        cache = MagicMock()
        client = make_client(fetch_author_feed=AsyncMock(return_value=author_feed))
        fetcher = make_fetcher(client, cache, renderer, feed_ttl_ms=1234)

        page = await fetcher.get_feed("alice.example", bypass_cache=True)

        cache.get.assert_not_called()
        cache.put.assert_called_once_with(feed_key("alice.example", 10, None), page, 1234)

    @pytest.mark.asyncio
    async def test_nested_response_shape(self, cache, renderer):
        client = make_client(
            fetch_author_feed=AsyncMock(return_value={"data": {"feed": [{"post": {}}], "cursor": "c"}})
        )
        page = await make_fetcher(client, cache, renderer).get_feed("alice.example")
        assert len(page.feed) == 1
        assert page.cursor == "c"

    @pytest.mark.asyncio
    async def test_home_handle_falls_back_to_timeline(self, cache, renderer):
        timeline = FeedPage(feed=[{"post": make_post_view()}], cursor="t")
        client = make_client(
            fetch_author_feed=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_timeline=AsyncMock(return_value=timeline),
        )
        page = await make_fetcher(client, cache, renderer).get_feed("me.example")

        assert page == timeline
        client.fetch_timeline.assert_awaited_once_with(limit=10, cursor=None)
        assert cache.get(feed_key("me.example", 10, None)) == timeline

    @pytest.mark.asyncio
    async def test_other_handles_get_empty_page(self, cache, renderer):
        client = make_client(fetch_author_feed=AsyncMock(side_effect=NotFoundError("gone")))
        page = await make_fetcher(client, cache, renderer).get_feed("alice.example")

        assert page.feed == []
        assert page.cursor is None
        client.fetch_timeline.assert_not_awaited()
        # Failures are not cached
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_total_failure_never_raises(self, cache, renderer):
        client = make_client(
            fetch_author_feed=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_timeline=AsyncMock(side_effect=UpstreamUnavailableError("down")),
        )
        page = await make_fetcher(client, cache, renderer).get_feed("me.example")
        assert page == FeedPage(feed=[], cursor=None)


class TestGetAuthoredFeed:
    """Authored-only fallback chain."""

    @pytest.mark.asyncio
    async def test_repository_listing(self, cache, renderer):
        listing = FeedPage(feed=[{"post": make_post_view()}], cursor="r")
        client = make_client(fetch_authored_only=AsyncMock(return_value=listing))

        page = await make_fetcher(client, cache, renderer).get_authored_feed("alice.example")

        assert page == listing
        assert cache.get(authored_key("alice.example", 10, None)) == listing

    @pytest.mark.asyncio
    async def test_falls_back_to_filtered_author_feed(self, cache, renderer, author_feed):
        client = make_client(
            fetch_authored_only=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_author_feed=AsyncMock(return_value=author_feed),
        )
        page = await make_fetcher(client, cache, renderer).get_authored_feed("alice.example")

        texts = [item["post"]["record"]["text"] for item in page.feed]
        assert texts == ["first post", "a reply"]
        assert page.cursor == "next-page"

    @pytest.mark.asyncio
    async def test_degraded_page_for_allow_listed_handle(self, cache, renderer):
        client = make_client(
            fetch_authored_only=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_author_feed=AsyncMock(side_effect=UpstreamUnavailableError("down")),
        )
        fetcher = make_fetcher(
            client, cache, renderer, degraded=DegradedPolicy(["flaky.example"])
        )

        page = await fetcher.get_authored_feed("flaky.example")

        assert page == FeedPage(feed=[], cursor=None)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_raises_when_chain_exhausted(self, cache, renderer):
        client = make_client(
            fetch_authored_only=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_author_feed=AsyncMock(side_effect=NotFoundError("gone")),
        )
        with pytest.raises(NotFoundError):
            await make_fetcher(client, cache, renderer).get_authored_feed("alice.example")


class TestGetRenderedFeed:
    """Per-item rendering and isolation."""

    @pytest.mark.asyncio
    async def test_renders_every_item(self, cache, renderer, author_feed):
        client = make_client(fetch_author_feed=AsyncMock(return_value=author_feed))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")

        assert len(result.posts) == 3
        assert result.cursor == "next-page"
        assert result.failed is False
        assert "first post" in result.posts[0]

    @pytest.mark.asyncio
    async def test_skip_replies_and_reposts(self, cache, renderer, author_feed):
        client = make_client(fetch_author_feed=AsyncMock(return_value=author_feed))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed(
            "alice.example", skip_replies=True, skip_reposts=True
        )

        assert len(result.posts) == 1
        assert "first post" in result.posts[0]

    @pytest.mark.asyncio
    async def test_items_without_post_are_skipped(self, cache, renderer):
        page = FeedPage(feed=[{"post": make_post_view()}, {"reason": "repost"}, {}])
        client = make_client(fetch_author_feed=AsyncMock(return_value=page))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")
        assert len(result.posts) == 1

    @pytest.mark.asyncio
    async def test_malformed_item_becomes_placeholder(self, cache, renderer):
        page = FeedPage(
            feed=[{"post": make_post_view("p1")}, "garbage", {"post": make_post_view("p3")}],
            cursor="c",
        )
        client = make_client(fetch_author_feed=AsyncMock(return_value=page))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")

        assert len(result.posts) == 3
        assert "This post couldn't be displayed" in result.posts[1]
        assert "/post/p3" in result.posts[2]
        assert result.failed is False

    @pytest.mark.asyncio
    async def test_authored_only_empty_shows_no_posts(self, cache, renderer):
        client = make_client(fetch_authored_only=AsyncMock(return_value=FeedPage()))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed(
            "alice.example", authored_only=True
        )

        assert len(result.posts) == 1
        assert "No Posts Found" in result.posts[0]
        assert result.cursor is None

    @pytest.mark.asyncio
    async def test_authored_only_drops_reposts(self, cache, renderer, author_feed):
        client = make_client(fetch_authored_only=AsyncMock(return_value=author_feed))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed(
            "alice.example", authored_only=True
        )
        assert len(result.posts) == 2

    @pytest.mark.asyncio
    async def test_invalid_feed_shape_yields_error_card(self, cache, renderer):
        client = make_client(
            fetch_author_feed=AsyncMock(return_value={"feed": "not a list", "cursor": "c"})
        )
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")

        assert result.failed is True
        assert result.cursor is None
        assert len(result.posts) == 1
        assert "Error Loading Feed" in result.posts[0]

    @pytest.mark.asyncio
    async def test_author_feed_failure_yields_error_card(self, cache, renderer):
        client = make_client(
            fetch_author_feed=AsyncMock(side_effect=UpstreamUnavailableError("down"))
        )
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")

        assert len(result.posts) == 1
        assert "Error Loading Feed" in result.posts[0]
        assert "down" in result.posts[0]
        assert result.cursor is None
        # Marked failed so the reduced retry gets a chance
        assert result.failed is True

    @pytest.mark.asyncio
    async def test_empty_feed_shows_no_posts(self, cache, renderer):
        client = make_client(fetch_author_feed=AsyncMock(return_value={"feed": []}))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed("alice.example")

        assert len(result.posts) == 1
        assert "No Posts Found" in result.posts[0]
        assert result.failed is False

    @pytest.mark.asyncio
    async def test_everything_filtered_shows_no_posts(self, cache, renderer):
        page = FeedPage(
            feed=[{"post": make_post_view(), "reply": {"parent": {}}}],
            cursor="c",
        )
        client = make_client(fetch_author_feed=AsyncMock(return_value=page))
        result = await make_fetcher(client, cache, renderer).get_rendered_feed(
            "alice.example", skip_replies=True
        )

        assert len(result.posts) == 1
        assert "No Posts Found" in result.posts[0]
        assert result.cursor == "c"

    @pytest.mark.asyncio
    async def test_authored_chain_failure_yields_posts_error_card(self, cache, renderer):
        client = make_client(
            fetch_authored_only=AsyncMock(side_effect=UpstreamUnavailableError("down")),
            fetch_author_feed=AsyncMock(side_effect=UpstreamUnavailableError("still down")),
        )
        result = await make_fetcher(client, cache, renderer).get_rendered_feed(
            "alice.example", authored_only=True
        )

        assert result.failed is True
        assert "Error Loading Posts" in result.posts[0]
        assert "still down" in result.posts[0]


class TestProfilesAndInvalidation:
    @pytest.mark.asyncio
    async def test_popular_profiles_skip_failures(self, cache, renderer):
        client = make_client(
            fetch_profile=AsyncMock(
                side_effect=[Profile(handle="a.example"), NotFoundError("gone"), Profile(handle="c.example")]
            )
        )
        fetcher = make_fetcher(
            client,
            cache,
            renderer,
            suggested_handles=["a.example", "b.example", "c.example", "d.example"],
        )

        profiles = await fetcher.get_popular_profiles(limit=3)

        assert [p.handle for p in profiles] == ["a.example", "c.example"]
        assert client.fetch_profile.await_count == 3

    @pytest.mark.asyncio
    async def test_popular_profiles_are_cached(self, cache, renderer):
        client = make_client(
            fetch_profile=AsyncMock(side_effect=lambda handle: Profile(handle=handle))
        )
        fetcher = make_fetcher(
            client, cache, renderer, suggested_handles=["a.example", "b.example"]
        )

        first = await fetcher.get_popular_profiles()
        second = await fetcher.get_popular_profiles()

        assert [p.handle for p in second] == ["a.example", "b.example"]
        assert first == second
        assert client.fetch_profile.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_popular_profile_is_retried_later(self, cache, renderer):
        client = make_client(
            fetch_profile=AsyncMock(side_effect=[NotFoundError("gone"), Profile(handle="a.example")])
        )
        fetcher = make_fetcher(client, cache, renderer, suggested_handles=["a.example"])

        assert await fetcher.get_popular_profiles() == []
        assert [p.handle for p in await fetcher.get_popular_profiles()] == ["a.example"]

    @pytest.mark.asyncio
    async def test_get_profile_returns_none_on_failure(self, cache, renderer):
        client = make_client(fetch_profile=AsyncMock(side_effect=NotFoundError("gone")))
        assert await make_fetcher(client, cache, renderer).get_profile("alice.example") is None

    def test_invalidate_handle(self, cache, renderer):
        fetcher = make_fetcher(make_client(), cache, renderer)
        cache.put(feed_key("alice.example", 10, None), FeedPage())
        cache.put(feed_key("alice.example", 10, "c"), FeedPage())
        cache.put(authored_key("alice.example", 5, None), FeedPage())
        cache.put(feed_key("bob.example", 10, None), FeedPage())

        assert fetcher.invalidate("@alice.example") == 3
        assert cache.get(feed_key("bob.example", 10, None)) is not None

    def test_invalidate_ignores_handle_case(self, cache, renderer):
        fetcher = make_fetcher(make_client(), cache, renderer)
        cache.put(feed_key("Alice.Example", 10, None), FeedPage())
        cache.put(authored_key("ALICE.example", 10, None), FeedPage())

        assert fetcher.invalidate("alice.EXAMPLE") == 2
        assert len(cache) == 0

    def test_invalidate_covers_known_did(self, cache, renderer):
        client = make_client(
            known_aliases=MagicMock(return_value={"me.example", "did:plc:me"})
        )
        fetcher = make_fetcher(client, cache, renderer)
        cache.put(feed_key("me.example", 10, None), FeedPage())
        cache.put(feed_key("did:plc:me", 10, None), FeedPage())
        cache.put(authored_key("did:plc:me", 5, "c"), FeedPage())
        cache.put(feed_key("bob.example", 10, None), FeedPage())

        assert fetcher.invalidate("me.example") == 3
        assert cache.get(feed_key("bob.example", 10, None)) is not None
        client.known_aliases.assert_called_once_with("me.example")

    def test_invalidate_all(self, cache, renderer):
        fetcher = make_fetcher(make_client(), cache, renderer)
        cache.put("a", 1)
        cache.put("b", 2)
        assert fetcher.invalidate() == 2
        assert len(cache) == 0
