"""HTTP routes for post embeds, feeds and post creation.

Routes:
- GET  /embed            standalone HTML page for one post
- GET  /api/post         HTML fragment for one post
- GET  /api/post/raw     upstream JSON for one post
- GET  /oembed           oEmbed 1.0 payload
- GET  /feed             feed page (author feed)
- GET  /user-posts       feed page (posts authored by the handle only)
- GET  /api/feed         rendered feed as JSON
- GET  /api/feed/raw     feed page JSON
- POST /api/create-post  publish a text post as the configured account
- POST /api/refresh      invalidate cached feeds
- GET  /health

Every cached route accepts `_nocache=1`, which drops the cached entry and
recomputes it. The handlers hold no business logic; they translate query
parameters and errors.
"""

from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from .bluesky import BlueskyError
from .cache import authored_key, feed_key
from .feed import FeedRequest
from .render import render_feed_page
from .services import Services, create_services
from .utils.logging import configure_logging

logger = structlog.get_logger()


class CreatePostRequest(BaseModel):
    text: str = ""


class RefreshRequest(BaseModel):
    handle: Optional[str] = None


def _status_for(exc: Exception) -> int:
    if isinstance(exc, BlueskyError) and exc.status_code:
        return exc.status_code
    return 500


def _error_json(exc: Exception) -> JSONResponse:
    message = exc.message if isinstance(exc, BlueskyError) else str(exc)
    return JSONResponse({"error": message}, status_code=_status_for(exc))


def _missing_url() -> JSONResponse:
    return JSONResponse({"error": "Missing post URL parameter"}, status_code=400)


def _cache_key(request: Request) -> str:
    params = sorted(
        (k, v) for k, v in request.query_params.multi_items() if k != "_nocache"
    )
    return f"{request.url.path}?{urlencode(params)}"


async def _cached(
    services: Services,
    request: Request,
    producer: Callable[[], Awaitable[Any]],
    nocache: bool,
) -> tuple[Any, dict[str, str]]:
    """Route-level read-through cache; returns the value plus cache headers."""
    key = _cache_key(request)
    if nocache:
        services.cache.delete(key)
    else:
        entry = services.cache.get_entry(key)
        if entry is not None:
            return entry.value, {"X-Cache": "HIT", "X-Cached-At": entry.cached_at.isoformat()}

    value = await services.cache.wrap(key, producer, bypass=True)
    return value, {"X-Cache": "MISS"}


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the FastAPI app around a Services container."""
    services = services or create_services()
    settings = services.settings
    configure_logging(settings.log_level)

    app = FastAPI(title="Bluesky Embed")
    app.state.services = services

    @app.on_event("startup")
    async def startup_event() -> None:
        await services.open()
        if services.session.has_credentials:
            await services.client.authenticate()
        logger.info("embed_server_started", authenticated=services.client.authenticated)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        try:
            await services.close()
        except Exception:  # noqa: BLE001
            logger.warning("client_close_failed", exc_info=True)

    def _feed_handle(handle: Optional[str]) -> Optional[str]:
        handle = (handle or settings.home_handle or "").strip().lstrip("@")
        return handle or None

    # =========================================================================
    # Single posts
    # =========================================================================

    @app.get("/embed", response_class=HTMLResponse)
    async def embed(
        request: Request,
        url: Optional[str] = None,
        theme: Optional[str] = None,
        width: Optional[str] = None,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        if not url:
            return _missing_url()

        async def produce() -> str:
            post = await services.client.fetch_post(url)
            return services.renderer.render_standalone_page(post, theme, width)

        try:
            html, headers = await _cached(services, request, produce, nocache)
        except Exception as exc:  # noqa: BLE001
            logger.error("embed_failed", url=url, error=str(exc))
            message = exc.message if isinstance(exc, BlueskyError) else str(exc)
            return HTMLResponse(
                services.renderer.render_error_page(message, theme),
                status_code=_status_for(exc),
            )
        return HTMLResponse(html, headers=headers)

    @app.get("/api/post")
    async def api_post(
        request: Request,
        url: Optional[str] = None,
        theme: Optional[str] = None,
        width: Optional[str] = None,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        if not url:
            return _missing_url()

        async def produce() -> str:
            post = await services.client.fetch_post(url)
            return services.renderer.render(post, theme, width)

        try:
            html, headers = await _cached(services, request, produce, nocache)
        except Exception as exc:  # noqa: BLE001
            logger.error("api_post_failed", url=url, error=str(exc))
            return _error_json(exc)
        return HTMLResponse(html, headers=headers)

    @app.get("/api/post/raw")
    async def api_post_raw(
        request: Request,
        url: Optional[str] = None,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        if not url:
            return _missing_url()

        async def produce() -> dict:
            post = await services.client.fetch_post(url)
            return post.raw

        try:
            data, headers = await _cached(services, request, produce, nocache)
        except Exception as exc:  # noqa: BLE001
            logger.error("api_post_raw_failed", url=url, error=str(exc))
            return _error_json(exc)
        return JSONResponse(data, headers=headers)

    @app.get("/oembed")
    async def oembed(
        request: Request,
        url: Optional[str] = None,
        maxwidth: Optional[int] = None,
        format: str = "json",
        theme: Optional[str] = None,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        if not url:
            return _missing_url()
        if format != "json":
            return JSONResponse({"error": "Only JSON format is supported"}, status_code=400)

        async def produce() -> dict:
            post = await services.client.fetch_post(url)
            return services.renderer.oembed(post, maxwidth, theme)

        try:
            data, headers = await _cached(services, request, produce, nocache)
        except Exception as exc:  # noqa: BLE001
            logger.error("oembed_failed", url=url, error=str(exc))
            return _error_json(exc)
        return JSONResponse(data, headers=headers)

    # =========================================================================
    # Feeds
    # =========================================================================

    def _feed_request(
        handle: str,
        limit: Optional[int],
        cursor: Optional[str],
        theme: Optional[str],
        width: Optional[str],
        skip_replies: bool,
        skip_reposts: bool,
        authored_only: bool,
        nocache: bool,
    ) -> FeedRequest:
        limit = limit or settings.default_feed_limit
        if nocache:
            key = authored_key if authored_only else feed_key
            services.cache.delete(key(handle, limit, cursor))
        return FeedRequest(
            handle=handle,
            limit=limit,
            cursor=cursor,
            theme=theme if theme in ("light", "dark") else settings.default_theme,
            width=width or settings.default_width,
            skip_replies=skip_replies,
            skip_reposts=skip_reposts,
            authored_only=authored_only,
            bypass_cache=nocache,
        )

    async def _feed_page(
        handle: Optional[str],
        limit: Optional[int],
        cursor: Optional[str],
        theme: Optional[str],
        width: Optional[str],
        skip_replies: bool,
        skip_reposts: bool,
        authored_only: bool,
        nocache: bool,
    ) -> HTMLResponse:
        handle = _feed_handle(handle)
        if not handle:
            return HTMLResponse(
                services.renderer.render_error_page("Missing handle parameter", theme),
                status_code=400,
            )

        request = _feed_request(
            handle, limit, cursor, theme, width, skip_replies, skip_reposts, authored_only, nocache
        )
        rendered = await services.retry.run(request)
        profile = (
            await services.feeds.get_profile(handle, bypass_cache=nocache)
            if authored_only
            else None
        )
        suggested = await services.feeds.get_popular_profiles()

        html = render_feed_page(
            rendered,
            handle,
            theme=request.theme,
            page_type="user-posts" if authored_only else "feed",
            profile=profile,
            suggested=suggested,
            web_url=settings.bsky_web_url,
        )
        return HTMLResponse(html)

    @app.get("/feed", response_class=HTMLResponse)
    async def feed(
        handle: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        theme: Optional[str] = None,
        width: Optional[str] = None,
        skip_replies: bool = False,
        skip_reposts: bool = False,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        return await _feed_page(
            handle, limit, cursor, theme, width, skip_replies, skip_reposts, False, nocache
        )

    @app.get("/user-posts", response_class=HTMLResponse)
    async def user_posts(
        handle: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        theme: Optional[str] = None,
        width: Optional[str] = None,
        skip_replies: bool = True,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        return await _feed_page(
            handle, limit, cursor, theme, width, skip_replies, True, True, nocache
        )

    @app.get("/api/feed")
    async def api_feed(
        handle: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        theme: Optional[str] = None,
        width: Optional[str] = None,
        skip_replies: bool = False,
        skip_reposts: bool = False,
        authored_only: bool = False,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        handle = _feed_handle(handle)
        if not handle:
            return JSONResponse({"error": "Missing handle parameter"}, status_code=400)

        request = _feed_request(
            handle, limit, cursor, theme, width, skip_replies, skip_reposts, authored_only, nocache
        )
        rendered = await services.retry.run(request)
        return JSONResponse(rendered.model_dump())

    @app.get("/api/feed/raw")
    async def api_feed_raw(
        handle: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        authored_only: bool = False,
        nocache: bool = Query(False, alias="_nocache"),
    ):
        handle = _feed_handle(handle)
        if not handle:
            return JSONResponse({"error": "Missing handle parameter"}, status_code=400)

        request = _feed_request(
            handle, limit, cursor, None, None, False, False, authored_only, nocache
        )
        try:
            if authored_only:
                page = await services.feeds.get_authored_feed(
                    handle, request.limit, cursor, request.bypass_cache
                )
            else:
                page = await services.feeds.get_feed(
                    handle, request.limit, cursor, request.bypass_cache
                )
        except Exception as exc:  # noqa: BLE001
            logger.error("api_feed_raw_failed", handle=handle, error=str(exc))
            return _error_json(exc)
        return JSONResponse(page.model_dump())

    # =========================================================================
    # Writes and maintenance
    # =========================================================================

    @app.post("/api/create-post")
    async def api_create_post(body: CreatePostRequest):
        try:
            ref = await services.client.create_post(body.text)
        except Exception as exc:  # noqa: BLE001
            logger.error("create_post_failed", error=str(exc))
            retryable = exc.retryable if isinstance(exc, BlueskyError) else False
            message = exc.message if isinstance(exc, BlueskyError) else str(exc)
            return JSONResponse(
                {"success": False, "error": message, "retryable": retryable},
                status_code=_status_for(exc),
            )

        home = settings.home_handle or services.session.handle
        if home:
            services.feeds.invalidate(home)
        return {"success": True, "uri": ref.uri, "cid": ref.cid}

    @app.post("/api/refresh")
    async def api_refresh(body: Optional[RefreshRequest] = None):
        handle = body.handle if body else None
        cleared = services.feeds.invalidate(handle)
        return {"success": True, "handle": handle, "cleared": cleared}

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            **services.client.status(),
            "cache": services.cache.stats(),
        }

    return app
