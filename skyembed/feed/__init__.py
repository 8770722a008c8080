"""Feed fetching, normalization and retry."""

from .fetcher import FeedFetcher
from .retry import FeedRequest, FeedRetryPolicy

__all__ = ["FeedFetcher", "FeedRequest", "FeedRetryPolicy"]
