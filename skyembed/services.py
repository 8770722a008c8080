"""Composition root: builds the shared service objects."""

from dataclasses import dataclass

import httpx
import structlog

from .bluesky import AuthSession, BlueskyClient, DegradedPolicy
from .cache import CacheStore
from .feed import FeedFetcher, FeedRetryPolicy
from .render import PostRenderer
from .utils.config import Settings, get_settings

logger = structlog.get_logger()


@dataclass
class Services:
    """Everything the route layer needs, sharing one session and one cache."""

    settings: Settings
    session: AuthSession
    cache: CacheStore
    client: BlueskyClient
    renderer: PostRenderer
    feeds: FeedFetcher
    retry: FeedRetryPolicy

    async def open(self) -> None:
        await self.client.open()

    async def close(self) -> None:
        await self.client.close()


def create_services(
    settings: Settings = None,
    transport: httpx.AsyncBaseTransport = None,
) -> Services:
    """Create and wire the client, cache, renderer and feed fetcher.

    Args:
        settings: Application settings (uses get_settings() if None).
        transport: Optional httpx transport, used by tests.

    Returns:
        Services container. The HTTP client is not opened yet.
    """
    settings = settings or get_settings()

    session = AuthSession(
        identifier=settings.bsky_username,
        app_password=settings.bsky_app_password,
    )
    degraded = DegradedPolicy(
        settings.fallback_handles,
        home_handle=settings.home_handle,
        home_did=settings.bsky_did,
    )
    cache = CacheStore(
        default_ttl_ms=settings.cache_duration_ms,
        enabled=settings.cache_enabled,
    )
    client = BlueskyClient(
        session=session,
        service_url=settings.bsky_service_url,
        public_service_url=settings.bsky_public_service_url,
        home_handle=settings.home_handle,
        home_did=settings.bsky_did,
        degraded=degraded,
        timeout=settings.http_timeout,
        transport=transport,
    )
    renderer = PostRenderer(
        web_url=settings.bsky_web_url,
        default_theme=settings.default_theme,
        default_width=settings.default_width,
        max_width=settings.max_width,
    )
    feeds = FeedFetcher(
        client=client,
        cache=cache,
        renderer=renderer,
        home_handle=settings.home_handle,
        degraded=degraded,
        feed_ttl_ms=settings.feed_ttl_ms,
        suggested_handles=settings.suggested_handles,
    )
    retry = FeedRetryPolicy(feeds, reduced_limit=settings.feed_retry_limit)

    logger.info(
        "services_created",
        cache_enabled=settings.cache_enabled,
        has_credentials=session.has_credentials,
    )
    return Services(
        settings=settings,
        session=session,
        cache=cache,
        client=client,
        renderer=renderer,
        feeds=feeds,
        retry=retry,
    )
