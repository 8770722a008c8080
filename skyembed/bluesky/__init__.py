"""Bluesky API integration module."""

from .client import BlueskyClient
from .errors import (
    AuthRequiredError,
    BlueskyError,
    InvalidFeedShapeError,
    InvalidIdentifierError,
    InvalidRequestError,
    NotFoundError,
    RateLimitExceeded,
    ResolutionError,
    UpstreamError,
    UpstreamUnavailableError,
)
from .fallbacks import DegradedPolicy
from .models import Author, FeedItem, FeedPage, PostRecord, PostRef, Profile, RenderedFeed
from .session import AuthSession

__all__ = [
    "BlueskyClient",
    "AuthSession",
    "DegradedPolicy",
    "Author",
    "FeedItem",
    "FeedPage",
    "PostRecord",
    "PostRef",
    "Profile",
    "RenderedFeed",
    "BlueskyError",
    "InvalidRequestError",
    "InvalidIdentifierError",
    "ResolutionError",
    "NotFoundError",
    "AuthRequiredError",
    "UpstreamError",
    "RateLimitExceeded",
    "UpstreamUnavailableError",
    "InvalidFeedShapeError",
]
