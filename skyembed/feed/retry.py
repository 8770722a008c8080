"""Two-step retry for rendered feed requests.

The first attempt uses the caller's parameters. If it raises or comes back
marked as failed, one more attempt is made with a smaller page and with
replies and reposts filtered out, which avoids the items most likely to
carry unusual payloads. The second result is final.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

import structlog

from ..bluesky.models import RenderedFeed

logger = structlog.get_logger()


@dataclass(frozen=True)
class FeedRequest:
    """Parameters of one rendered feed request."""

    handle: str
    limit: int = 10
    cursor: Optional[str] = None
    theme: str = "light"
    width: str = "100%"
    skip_replies: bool = False
    skip_reposts: bool = False
    authored_only: bool = False
    bypass_cache: bool = False

    def reduced(self, reduced_limit: int) -> "FeedRequest":
        return replace(
            self,
            limit=min(self.limit, reduced_limit),
            skip_replies=True,
            skip_reposts=True,
        )


class FeedRetryPolicy:
    def __init__(self, fetcher, reduced_limit: int = 5):
        self.fetcher = fetcher
        self.reduced_limit = reduced_limit

    async def _attempt(self, request: FeedRequest) -> RenderedFeed:
        return await self.fetcher.get_rendered_feed(
            request.handle,
            limit=request.limit,
            cursor=request.cursor,
            theme=request.theme,
            width=request.width,
            skip_replies=request.skip_replies,
            skip_reposts=request.skip_reposts,
            authored_only=request.authored_only,
            bypass_cache=request.bypass_cache,
        )

    async def run(self, request: FeedRequest) -> RenderedFeed:
        try:
            result = await self._attempt(request)
            if not result.failed:
                return result
            logger.warning("feed_attempt_failed", handle=request.handle, attempt=1)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "feed_attempt_failed", handle=request.handle, attempt=1, error=str(exc)
            )

        retry = request.reduced(self.reduced_limit)
        logger.info("feed_retry", handle=request.handle, limit=retry.limit)
        try:
            return await self._attempt(retry)
        except Exception as exc:  # noqa: BLE001
            logger.error("feed_retry_failed", handle=request.handle, error=str(exc))
            return RenderedFeed(
                posts=[
                    self.fetcher.renderer.render_feed_error(
                        str(exc), retry.theme, retry.authored_only
                    )
                ],
                cursor=None,
                failed=True,
            )
