"""Feed fetching with caching, fallback chains and per-item isolation.

Every public method here absorbs upstream failures: callers get an empty
page, a degraded page or an error card, never an exception. The one
exception is `get_authored_feed`, which raises once its whole fallback chain
is exhausted so that `get_rendered_feed` can report it.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

import structlog

from ..bluesky.fallbacks import DegradedPolicy
from ..bluesky.identifiers import clean_handle
from ..bluesky.models import FeedPage, Profile, RenderedFeed
from ..bluesky.normalize import coerce_feed_page, dig, feed_item
from ..cache import CacheStore, actor_prefixes, authored_key, feed_key

logger = structlog.get_logger()


def profile_key(handle: str) -> str:
    return f"profile:{handle.lower()}"


class FeedFetcher:
    """Produces feed pages and rendered feeds for one configured account.

    Args:
        client: BlueskyClient (or anything with the same fetch_* coroutines)
        cache: Shared CacheStore
        renderer: PostRenderer used for items and placeholders
        home_handle: Handle allowed to fall back to the home timeline
        degraded: Allow-list policy for degraded feeds
        feed_ttl_ms: TTL applied to cached feed pages
        suggested_handles: Handles offered by get_popular_profiles
    """

    def __init__(
        self,
        client,
        cache: CacheStore,
        renderer,
        home_handle: Optional[str] = None,
        degraded: Optional[DegradedPolicy] = None,
        feed_ttl_ms: int = 300_000,
        suggested_handles: Iterable[str] = (),
        profile_pause: float = 0.1,
    ):
        self.client = client
        self.cache = cache
        self.renderer = renderer
        self.home_handle = clean_handle(home_handle) if home_handle else None
        self.degraded = degraded or DegradedPolicy()
        self.feed_ttl_ms = feed_ttl_ms
        self.suggested_handles = [clean_handle(h) for h in suggested_handles if h]
        self.profile_pause = profile_pause

    # =========================================================================
    # Feed pages
    # =========================================================================

    async def get_feed(
        self,
        handle: str,
        limit: int = 10,
        cursor: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> FeedPage:
        """Author feed for a handle; an empty page when everything fails."""
        page, _ = await self._load_feed(handle, limit, cursor, bypass_cache)
        return page

    async def _load_feed(
        self,
        handle: str,
        limit: int,
        cursor: Optional[str],
        bypass_cache: bool,
    ) -> tuple[FeedPage, Optional[str]]:
        """Same as get_feed, plus the upstream error when no source answered."""
        handle = clean_handle(handle)
        key = feed_key(handle, limit, cursor)

        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("feed_cache_hit", handle=handle, limit=limit)
                return cached, None

        try:
            page = coerce_feed_page(
                await self.client.fetch_author_feed(handle, limit=limit, cursor=cursor)
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("author_feed_failed", handle=handle, error=str(exc))
            page = await self._timeline_fallback(handle, limit, cursor)
            if page is None:
                return FeedPage(feed=[], cursor=None), str(exc) or type(exc).__name__

        self.cache.put(key, page, self.feed_ttl_ms)
        return page, None

    async def _timeline_fallback(
        self, handle: str, limit: int, cursor: Optional[str]
    ) -> Optional[FeedPage]:
        if not self.home_handle or handle != self.home_handle:
            return None
        try:
            page = coerce_feed_page(await self.client.fetch_timeline(limit=limit, cursor=cursor))
        except Exception as exc:  # noqa: BLE001
            logger.error("timeline_fallback_failed", handle=handle, error=str(exc))
            return None
        logger.info("timeline_fallback_used", handle=handle, count=len(page.feed))
        return page

    async def get_authored_feed(
        self,
        handle: str,
        limit: int = 10,
        cursor: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> FeedPage:
        """Posts written by the handle itself, without reposts.

        Tries the repository listing first, then the author feed filtered
        down to the actor's own posts, then a degraded empty page for
        allow-listed handles. Raises when all of them fail.
        """
        handle = clean_handle(handle)
        key = authored_key(handle, limit, cursor)

        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        try:
            page = coerce_feed_page(
                await self.client.fetch_authored_only(handle, limit=limit, cursor=cursor)
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("authored_feed_failed", handle=handle, error=str(exc))
            try:
                page = self._own_posts(
                    handle,
                    coerce_feed_page(
                        await self.client.fetch_author_feed(handle, limit=limit, cursor=cursor)
                    ),
                )
                logger.info("authored_feed_from_author_feed", handle=handle, count=len(page.feed))
            except Exception:
                if self.degraded.covers(handle):
                    return self.degraded.feed(handle)
                raise

        self.cache.put(key, page, self.feed_ttl_ms)
        return page

    @staticmethod
    def _own_posts(handle: str, page: FeedPage) -> FeedPage:
        wanted = handle.lower()
        own = []
        for item in page.feed:
            try:
                entry = feed_item(item)
            except Exception:  # noqa: BLE001
                continue
            if entry.is_repost or entry.post is None:
                continue
            author_ids = (dig(entry.post, "author.handle"), dig(entry.post, "author.did"))
            if any(isinstance(a, str) and a.lower() == wanted for a in author_ids):
                own.append(item)
        return FeedPage(feed=own, cursor=page.cursor)

    # =========================================================================
    # Rendering
    # =========================================================================

    async def get_rendered_feed(
        self,
        handle: str,
        limit: int = 10,
        cursor: Optional[str] = None,
        theme: str = "light",
        width: str = "100%",
        skip_replies: bool = False,
        skip_reposts: bool = False,
        authored_only: bool = False,
        bypass_cache: bool = False,
    ) -> RenderedFeed:
        """Render a feed page item by item. Never raises."""
        try:
            if authored_only:
                page = await self.get_authored_feed(handle, limit, cursor, bypass_cache)
            else:
                page, error = await self._load_feed(handle, limit, cursor, bypass_cache)
                if error is not None:
                    return self._failed_feed(handle, error, theme, authored_only)
            page = coerce_feed_page(page)

            posts: list[str] = []
            for index, item in enumerate(page.feed):
                try:
                    entry = feed_item(item)
                    if skip_replies and entry.is_reply:
                        continue
                    if (skip_reposts or authored_only) and entry.is_repost:
                        continue
                    if entry.post is None:
                        continue
                    posts.append(self.renderer.render(entry.post, theme, width))
                except Exception as exc:  # noqa: BLE001
                    logger.warning("feed_item_failed", handle=handle, index=index, error=str(exc))
                    posts.append(self.renderer.render_item_error(str(exc), theme, width))

            if not posts:
                posts.append(self.renderer.render_no_posts(handle, theme))

            logger.info("feed_rendered", handle=handle, count=len(posts), has_more=bool(page.cursor))
            return RenderedFeed(posts=posts, cursor=page.cursor)

        except Exception as exc:  # noqa: BLE001
            return self._failed_feed(handle, str(exc), theme, authored_only)

    def _failed_feed(
        self, handle: str, error: str, theme: str, authored_only: bool
    ) -> RenderedFeed:
        logger.error("feed_render_failed", handle=handle, error=error)
        return RenderedFeed(
            posts=[self.renderer.render_feed_error(error, theme, authored_only)],
            cursor=None,
            failed=True,
        )

    # =========================================================================
    # Profiles
    # =========================================================================

    async def get_profile(self, handle: str, bypass_cache: bool = False) -> Optional[Profile]:
        """Profile for a feed page header; None when unavailable."""
        handle = clean_handle(handle)
        try:
            return await self.cache.wrap(
                profile_key(handle),
                lambda: self.client.fetch_profile(handle),
                bypass=bypass_cache,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("profile_unavailable", handle=handle, error=str(exc))
            return None

    async def get_popular_profiles(self, limit: int = 5) -> list[Profile]:
        """Profiles of the configured suggested handles, skipping failures."""
        profiles: list[Profile] = []
        for handle in self.suggested_handles[:limit]:
            profile = self.cache.get(profile_key(handle))
            if profile is None:
                profile = await self.get_profile(handle, bypass_cache=True)
                # Spread out upstream calls
                await asyncio.sleep(self.profile_pause)
            if profile is not None:
                profiles.append(profile)
        return profiles

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, handle: Optional[str] = None) -> int:
        """Drop cached feed pages for one handle, or everything."""
        if handle is None:
            count = len(self.cache)
            self.cache.clear()
            return count

        handle = clean_handle(handle)
        # Pages may be cached under the handle or the DID
        actors = {a.lower() for a in (handle, *self.client.known_aliases(handle))}

        count = 0
        for actor in sorted(actors):
            count += sum(self.cache.delete_prefix(prefix) for prefix in actor_prefixes(actor))
            if self.cache.delete(profile_key(actor)):
                count += 1
        logger.info("feed_cache_invalidated", handle=handle, aliases=sorted(actors), count=count)
        return count
