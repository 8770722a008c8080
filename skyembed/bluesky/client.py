"""Bluesky (AT Protocol) API client.

XRPC reference:
https://docs.bsky.app/docs/category/http-reference

Calls under `app.bsky.*` are served by the configured PDS when the session is
authenticated and by the public AppView otherwise; `com.atproto.*` calls
always go to the PDS.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from .errors import (
    AuthRequiredError,
    BlueskyError,
    InvalidRequestError,
    NotFoundError,
    RateLimitExceeded,
    ResolutionError,
    UpstreamError,
    UpstreamUnavailableError,
)
from .fallbacks import DegradedPolicy
from .identifiers import (
    build_post_uri,
    clean_handle,
    has_domain,
    is_did,
    parse_post_identifier,
)
from .models import (
    MAX_POST_LENGTH,
    POST_COLLECTION,
    FeedPage,
    PostRecord,
    PostRef,
    Profile,
    PublishRequest,
)
from .normalize import coerce_feed_page, normalize_post, normalize_profile, records_to_feed_page
from .session import AuthSession

logger = structlog.get_logger()

AUTH_ERROR_CODES = {"AuthRequired", "AuthMissing", "InvalidToken", "ExpiredToken"}


def _error_for(status_code: int, message: str, error_code: Optional[str]) -> BlueskyError:
    """Map an upstream HTTP failure onto the error taxonomy."""
    if status_code >= 500:
        return UpstreamUnavailableError(message, status_code=status_code, error_code=error_code)
    if status_code == 401 or error_code in AUTH_ERROR_CODES:
        return AuthRequiredError(message, status_code=401, error_code=error_code)
    if status_code == 404 or error_code == "NotFound":
        return NotFoundError(message, status_code=404, error_code=error_code)
    return UpstreamError(message, status_code=status_code, error_code=error_code)


class BlueskyClient:
    """Async client for the Bluesky API.

    Usage:
        async with BlueskyClient(AuthSession(handle, app_password)) as client:
            post = await client.fetch_post("https://bsky.app/profile/x.bsky.social/post/3k...")
            page = await client.fetch_author_feed("x.bsky.social", limit=10)
    """

    SERVICE_URL = "https://bsky.social"
    PUBLIC_SERVICE_URL = "https://public.api.bsky.app"

    def __init__(
        self,
        session: Optional[AuthSession] = None,
        service_url: str = SERVICE_URL,
        public_service_url: str = PUBLIC_SERVICE_URL,
        home_handle: Optional[str] = None,
        home_did: Optional[str] = None,
        degraded: Optional[DegradedPolicy] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session or AuthSession()
        self.service_url = service_url.rstrip("/")
        self.public_service_url = public_service_url.rstrip("/")
        self.home_handle = clean_handle(home_handle) if home_handle else None
        self.home_did = home_did
        self.degraded = degraded or DegradedPolicy()
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # handle -> DID, kept for the lifetime of the client
        self._did_cache: dict[str, str] = {}

        logger.info(
            "bluesky_client_initialized",
            home_handle=self.home_handle,
            home_did_configured=bool(self.home_did),
        )

    async def open(self) -> None:
        """Initialize the underlying HTTP client if not already open."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BlueskyClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    @property
    def authenticated(self) -> bool:
        return self.session.authenticated

    def _service_for(self, nsid: str) -> str:
        if nsid.startswith("app.bsky.") and not self.session.authenticated:
            return self.public_service_url
        return self.service_url

    async def _request(
        self,
        method: str,
        nsid: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        service: Optional[str] = None,
    ) -> dict:
        """Make an XRPC request with error handling."""
        url = f"{service or self._service_for(nsid)}/xrpc/{nsid}"
        params = {k: v for k, v in (params or {}).items() if v is not None}

        logger.debug("bluesky_api_request", method=method, nsid=nsid)

        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json,
                headers=self.session.auth_headers(),
            )

            if response.status_code == 429:
                raise RateLimitExceeded("Rate limit exceeded", status_code=429)

            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            error_data = {}
            try:
                error_data = e.response.json() if e.response.content else {}
            except ValueError:
                error_data = {"raw": e.response.text}
            if not isinstance(error_data, dict):
                error_data = {"raw": error_data}

            error_msg = error_data.get("message") or error_data.get("error") or str(e)
            error_code = error_data.get("error")

            logger.warning(
                "api_error_details",
                status_code=e.response.status_code,
                error_code=error_code,
                error_msg=error_msg,
                nsid=nsid,
                method=method,
            )
            raise _error_for(e.response.status_code, error_msg, error_code) from e

        except httpx.TimeoutException as e:
            logger.warning("api_timeout", nsid=nsid, timeout=self.timeout)
            raise UpstreamUnavailableError(f"Timed out calling {nsid}") from e

        except httpx.TransportError as e:
            logger.warning("api_unreachable", nsid=nsid, error=str(e))
            raise UpstreamUnavailableError(f"Could not reach Bluesky: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Malformed JSON from {nsid}", status_code=502) from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected response body from {nsid}", status_code=502)
        return data

    # =========================================================================
    # Session
    # =========================================================================

    async def authenticate(self) -> bool:
        """Log in once; later calls return the established state.

        Never raises. Without configured credentials this is a no-op that
        returns False.
        """
        if self.session.authenticated:
            return True
        if not self.session.has_credentials:
            return False

        try:
            data = await self._request(
                "POST",
                "com.atproto.server.createSession",
                json={
                    "identifier": self.session.identifier,
                    "password": self.session.app_password,
                },
                service=self.service_url,
            )
        except BlueskyError as e:
            logger.error(
                "authentication_failed",
                status_code=e.status_code,
                error=e.message,
            )
            if "Invalid identifier or password" in e.message:
                logger.error(
                    "authentication_hint",
                    hint="Check BSKY_USERNAME and BSKY_APP_PASSWORD; the username has no leading @",
                )
            elif isinstance(e, UpstreamUnavailableError):
                logger.error("bluesky_unavailable", hint="Please try again later")
            return False

        # TODO: refresh via com.atproto.server.refreshSession when the access token expires
        self.session.establish(data)
        logger.info("authenticated", handle=self.session.handle)
        return True

    # =========================================================================
    # Identity
    # =========================================================================

    async def resolve_actor_id(self, handle: str) -> str:
        """Resolve a handle to its DID, reusing earlier resolutions."""
        handle = clean_handle(handle)

        if is_did(handle):
            return handle

        if self.home_handle and handle == self.home_handle and self.home_did:
            logger.debug("home_did_used", handle=handle)
            return self.home_did

        cached = self._did_cache.get(handle)
        if cached:
            return cached

        if not has_domain(handle):
            raise ResolutionError(handle, "Invalid handle format (missing domain)")

        try:
            data = await self._request(
                "GET",
                "com.atproto.identity.resolveHandle",
                params={"handle": handle},
                service=self.service_url,
            )
        except UpstreamUnavailableError as e:
            raise ResolutionError(
                handle, e.message, status_code=e.status_code, retryable=True
            ) from e
        except BlueskyError as e:
            status = 404 if e.status_code in (400, 404) else e.status_code
            raise ResolutionError(handle, e.message, status_code=status) from e

        did = data.get("did")
        if not did:
            raise ResolutionError(handle, "No DID returned", status_code=404)

        self._did_cache[handle] = did
        logger.info("handle_resolved", handle=handle, did=did)
        return did

    def known_aliases(self, actor: str) -> set[str]:
        """Handle and DID forms of an actor that are known without a network call."""
        actor = clean_handle(actor)
        pairs = dict(self._did_cache)
        if self.home_handle and self.home_did:
            pairs[self.home_handle] = self.home_did
        if self.session.handle and self.session.did:
            pairs[self.session.handle] = self.session.did

        aliases = {actor}
        wanted = actor.lower()
        for handle, did in pairs.items():
            if wanted in (handle.lower(), did.lower()):
                aliases.update((handle, did))
        return aliases

    # =========================================================================
    # Posts
    # =========================================================================

    async def fetch_post(self, identifier: str) -> PostRecord:
        """Fetch a post by AT URI or web URL."""
        locator = parse_post_identifier(identifier)
        did = await self.resolve_actor_id(locator.actor)
        uri = build_post_uri(did, locator.rkey)

        if self.session.has_credentials:
            await self.authenticate()

        data = await self._request("GET", "app.bsky.feed.getPosts", params={"uris": uri})
        posts = data.get("posts") or []
        if not posts:
            raise NotFoundError(f"Post not found for URI: {uri}")

        logger.info("post_fetched", uri=uri)
        return normalize_post(posts[0])

    async def create_post(self, text: str) -> PostRef:
        """Create a new text post as the logged-in account."""
        try:
            request = PublishRequest(text=text)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Post text must be between 1 and {MAX_POST_LENGTH} characters"
            ) from e

        if not await self.authenticate():
            raise AuthRequiredError("Must be authenticated to create posts")

        created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        data = await self._request(
            "POST",
            "com.atproto.repo.createRecord",
            json={
                "repo": self.session.did or self.session.identifier,
                "collection": POST_COLLECTION,
                "record": {
                    "$type": POST_COLLECTION,
                    "text": request.text,
                    "createdAt": created_at,
                },
            },
            service=self.service_url,
        )
        if not data.get("uri") or not data.get("cid"):
            raise UpstreamError("createRecord returned no post reference", status_code=502)

        ref = PostRef(uri=data["uri"], cid=data["cid"])
        logger.info("post_created", uri=ref.uri)
        return ref

    # =========================================================================
    # Feeds
    # =========================================================================

    async def _authenticate_or_warn(self, actor: str) -> None:
        if not await self.authenticate():
            logger.warning(
                "not_authenticated",
                actor=actor,
                hint="proceeding with limited access",
            )

    async def fetch_author_feed(
        self,
        actor: str,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> FeedPage:
        """Posts, reposts and replies by an actor, newest first."""
        await self._authenticate_or_warn(actor)
        did = await self.resolve_actor_id(actor)

        data = await self._request(
            "GET",
            "app.bsky.feed.getAuthorFeed",
            params={"actor": did, "limit": limit, "cursor": cursor},
        )
        page = coerce_feed_page(data)
        logger.info("author_feed_fetched", actor=actor, count=len(page.feed))
        return page

    async def fetch_timeline(self, limit: int = 20, cursor: Optional[str] = None) -> FeedPage:
        """Home timeline of the logged-in account."""
        if not await self.authenticate():
            raise AuthRequiredError("Authentication is required to fetch a timeline")

        data = await self._request(
            "GET",
            "app.bsky.feed.getTimeline",
            params={"limit": limit, "cursor": cursor},
        )
        page = coerce_feed_page(data)
        logger.info("timeline_fetched", count=len(page.feed))
        return page

    async def fetch_authored_only(
        self,
        actor: str,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> FeedPage:
        """Only records authored by the actor (no reposts, no feed injections)."""
        await self._authenticate_or_warn(actor)
        handle = clean_handle(actor)
        did = await self.resolve_actor_id(handle)

        data = await self._request(
            "GET",
            "com.atproto.repo.listRecords",
            params={
                "repo": did,
                "collection": POST_COLLECTION,
                "limit": limit,
                "cursor": cursor,
            },
            service=self.service_url,
        )

        profile: Optional[Profile] = None
        try:
            profile = await self.fetch_profile(handle)
        except BlueskyError as e:
            logger.warning("profile_enrichment_failed", actor=handle, error=e.message)

        author_handle = profile.handle if profile and is_did(handle) else handle
        page = records_to_feed_page(data, did, author_handle, profile)
        logger.info("authored_posts_fetched", actor=handle, count=len(page.feed))
        return page

    # =========================================================================
    # Profiles
    # =========================================================================

    async def fetch_profile(self, handle: str) -> Profile:
        """Get a profile; allow-listed handles degrade instead of failing."""
        await self.authenticate()
        handle = clean_handle(handle)

        try:
            did = await self.resolve_actor_id(handle)
            data = await self._request("GET", "app.bsky.actor.getProfile", params={"actor": did})
            return normalize_profile(data)
        except BlueskyError as e:
            logger.warning(
                "profile_fetch_failed",
                handle=handle,
                status_code=e.status_code,
                error=e.message,
            )
            if self.degraded.covers(handle):
                return self.degraded.profile(handle)
            raise

    def status(self) -> dict[str, Any]:
        return {
            "authenticated": self.session.authenticated,
            "service": self.service_url,
            "home_handle": self.home_handle,
        }
