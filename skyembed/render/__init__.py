"""HTML rendering for posts and feeds."""

from .feed_page import render_feed_page
from .post import PostRenderer, format_text

__all__ = ["PostRenderer", "format_text", "render_feed_page"]
