"""Tests for the two-step feed retry policy."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from skyembed.bluesky.models import RenderedFeed
from skyembed.feed import FeedRequest, FeedRetryPolicy


@pytest.fixture
def fetcher():
    fetcher = MagicMock()
    fetcher.renderer.render_feed_error.return_value = "<div>error card</div>"
    return fetcher


def ok(*posts: str) -> RenderedFeed:
    return RenderedFeed(posts=list(posts), cursor="c")


def failed() -> RenderedFeed:
    return RenderedFeed(posts=["<div>error</div>"], cursor=None, failed=True)


class TestFeedRetryPolicy:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(return_value=ok("a"))
        policy = FeedRetryPolicy(fetcher, reduced_limit=5)

        result = await policy.run(FeedRequest(handle="alice.example", limit=10))

        assert result.posts == ["a"]
        fetcher.get_rendered_feed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_page_triggers_reduced_retry(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(side_effect=[failed(), ok("b")])
        policy = FeedRetryPolicy(fetcher, reduced_limit=5)

        result = await policy.run(FeedRequest(handle="alice.example", limit=10, cursor="c0"))

        assert result.posts == ["b"]
        second = fetcher.get_rendered_feed.await_args_list[1]
        assert second.kwargs["limit"] == 5
        assert second.kwargs["skip_replies"] is True
        assert second.kwargs["skip_reposts"] is True
        assert second.kwargs["cursor"] == "c0"

    @pytest.mark.asyncio
    async def test_exception_triggers_retry(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(side_effect=[RuntimeError("boom"), ok("c")])
        result = await FeedRetryPolicy(fetcher).run(FeedRequest(handle="alice.example"))
        assert result.posts == ["c"]

    @pytest.mark.asyncio
    async def test_smaller_limit_kept(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(side_effect=[failed(), ok()])
        await FeedRetryPolicy(fetcher, reduced_limit=5).run(
            FeedRequest(handle="alice.example", limit=3)
        )
        assert fetcher.get_rendered_feed.await_args_list[1].kwargs["limit"] == 3

    @pytest.mark.asyncio
    async def test_second_result_is_final(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(side_effect=[failed(), failed()])
        result = await FeedRetryPolicy(fetcher).run(FeedRequest(handle="alice.example"))

        assert result.failed is True
        assert fetcher.get_rendered_feed.await_count == 2

    @pytest.mark.asyncio
    async def test_second_exception_yields_error_page(self, fetcher):
        fetcher.get_rendered_feed = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b")])
        result = await FeedRetryPolicy(fetcher).run(
            FeedRequest(handle="alice.example", authored_only=True)
        )

        assert result.posts == ["<div>error card</div>"]
        assert result.cursor is None
        assert result.failed is True
        fetcher.renderer.render_feed_error.assert_called_once_with("b", "light", True)

    def test_reduced_request(self):
        request = FeedRequest(handle="a.b", limit=20, theme="dark")
        retry = request.reduced(5)
        assert retry.limit == 5
        assert retry.theme == "dark"
        assert request.limit == 20
