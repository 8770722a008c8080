"""Exceptions raised by the Bluesky client and feed layer."""

from typing import Optional


class BlueskyError(Exception):
    """Base exception for Bluesky API errors."""

    status_code: Optional[int] = None
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error_code = error_code
        if retryable is not None:
            self.retryable = retryable
        super().__init__(self.message)


class InvalidRequestError(BlueskyError):
    """Client-side input was rejected before any network call."""

    status_code = 400


class InvalidIdentifierError(InvalidRequestError):
    """A post URL, AT URI or handle is malformed."""


class ResolutionError(BlueskyError):
    """A handle could not be resolved to a DID."""

    status_code = 400

    def __init__(
        self,
        handle: str,
        cause: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.handle = handle
        self.cause = cause
        super().__init__(
            f"Could not resolve handle: {handle} - {cause}",
            status_code=status_code,
            retryable=retryable,
        )


class NotFoundError(BlueskyError):
    """The identifier is valid but no such post or profile exists."""

    status_code = 404


class AuthRequiredError(BlueskyError):
    """The operation needs credentials that are missing or invalid."""

    status_code = 401


class UpstreamError(BlueskyError):
    """Upstream rejected the request with a 4xx status."""


class RateLimitExceeded(UpstreamError):
    """Rate limit exceeded exception."""

    status_code = 429
    retryable = True


class UpstreamUnavailableError(BlueskyError):
    """Upstream returned 5xx or could not be reached."""

    status_code = 503
    retryable = True


class InvalidFeedShapeError(BlueskyError):
    """Even permissive shape probing could not find a feed array."""

    status_code = 502
