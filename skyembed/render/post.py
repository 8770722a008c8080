"""Post rendering to embeddable HTML.

Rendering is a pure function of a `PostRecord` plus theme and width: the
same input always yields the same markup. Raw payloads are normalized first.
`render` and `render_standalone_page` never raise; on any failure they fall
back to a small notice.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from html import escape
from typing import Any, Optional, Union

import structlog

from ..bluesky.identifiers import last_segment, post_url, profile_url
from ..bluesky.models import (
    ExternalMedia,
    ImagesMedia,
    PostRecord,
    QuoteMedia,
    VideoMedia,
)
from ..bluesky.normalize import dig, normalize_post
from .styles import ERROR_COLOR, FONT_STACK, embed_css, palette

logger = structlog.get_logger()

HLS_SCRIPT = "https://cdn.jsdelivr.net/npm/hls.js@1.4.12"

_TOKEN_RE = re.compile(
    r"(?P<url>https?://[^\s<>\"']+)"
    r"|(?<![\w.@])@(?P<handle>[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)+)"
)

PostInput = Union[PostRecord, Mapping]


def _js_string(value: str) -> str:
    """JavaScript string literal that is safe inside an inline <script>."""
    return json.dumps(value).replace("</", "<\\/")


def format_text(text: str, web_url: str = "https://bsky.app") -> str:
    """Escape post text and turn URLs and @mentions into links."""
    parts = []
    pos = 0
    for match in _TOKEN_RE.finditer(text):
        parts.append(escape(text[pos : match.start()]))
        if match.group("url"):
            url = escape(match.group("url"))
            parts.append(
                f'<a href="{url}" target="_blank" rel="noopener noreferrer" class="bsky-link">{url}</a>'
            )
        else:
            handle = escape(match.group("handle"))
            href = escape(profile_url(web_url, match.group("handle")))
            parts.append(
                f'<a href="{href}" target="_blank" rel="noopener noreferrer" class="bsky-mention">@{handle}</a>'
            )
        pos = match.end()
    parts.append(escape(text[pos:]))
    return "".join(parts)


def format_timestamp(record: PostRecord) -> str:
    ts = record.timestamp
    return f"{ts:%b} {ts.day}, {ts.year} {ts:%H:%M} UTC"


class PostRenderer:
    """Renders posts, placeholders and oEmbed payloads.

    Args:
        web_url: Base URL of the Bluesky web client used for links
        default_theme: Theme used when none is given
        default_width: CSS max-width used when none is given
        max_width: Default oEmbed maxwidth in pixels
    """

    def __init__(
        self,
        web_url: str = "https://bsky.app",
        default_theme: str = "light",
        default_width: str = "100%",
        max_width: int = 550,
    ):
        self.web_url = web_url.rstrip("/")
        self.default_theme = default_theme
        self.default_width = default_width
        self.max_width = max_width

    def _options(
        self, theme: Optional[str], width: Union[str, int, float, None]
    ) -> tuple[str, str]:
        theme = theme if theme in ("light", "dark") else self.default_theme
        if isinstance(width, (int, float)) and not isinstance(width, bool) and width > 0:
            # Bare numbers are pixels
            return theme, f"{width:g}px"
        if not isinstance(width, str) or not width.strip():
            return theme, self.default_width
        return theme, width.strip()

    @staticmethod
    def _record(post: PostInput) -> PostRecord:
        return post if isinstance(post, PostRecord) else normalize_post(post)

    # =========================================================================
    # Posts
    # =========================================================================

    def render(
        self,
        post: PostInput,
        theme: Optional[str] = None,
        width: Optional[str] = None,
    ) -> str:
        """Embeddable HTML fragment for one post."""
        theme, width = self._options(theme, width)
        try:
            return self._render_post(self._record(post), theme, width)
        except Exception as exc:  # noqa: BLE001
            logger.error("post_render_failed", error=str(exc))
            return self._render_fallback(post, theme, width)

    def _render_post(self, record: PostRecord, theme: str, width: str) -> str:
        author = record.author
        name = escape(author.name)
        handle = escape(author.handle)
        author_url = escape(profile_url(self.web_url, author.handle))
        link = escape(post_url(self.web_url, author.handle, record.post_id))

        if author.avatar:
            avatar = f'<img src="{escape(author.avatar)}" alt="{name}" class="bsky-avatar" loading="lazy">'
        else:
            avatar = '<div class="bsky-avatar"></div>'

        return f"""<div class="bsky-embed-container" style="max-width: {escape(width)};">
  <style>{embed_css(theme)}</style>
  <div class="bsky-embed">
    <div class="bsky-content">
      <div class="bsky-author">
        <a href="{author_url}" target="_blank" rel="noopener noreferrer">{avatar}</a>
        <div class="bsky-author-info">
          <a href="{author_url}" target="_blank" rel="noopener noreferrer" class="bsky-author-link">
            <span class="bsky-author-name">{name}</span>
            <span class="bsky-author-handle">@{handle}</span>
          </a>
        </div>
      </div>
      <div class="bsky-post-text">{format_text(record.text, self.web_url)}</div>
      <div class="bsky-post-date">{format_timestamp(record)}</div>
      {self._render_media(record)}
      <div class="bsky-footer">
        <a href="{link}" target="_blank" rel="noopener noreferrer" class="bsky-footer-link">View on Bluesky</a>
      </div>
    </div>
  </div>
</div>"""

    def _render_fallback(self, post: Any, theme: str, width: str) -> str:
        uri = None
        handle = "handle"
        if isinstance(post, PostRecord):
            uri, handle = post.uri, post.author.handle
        elif isinstance(post, Mapping):
            uri = post.get("uri")
            handle = dig(post, "author.handle") or handle

        if isinstance(uri, str) and uri and isinstance(handle, str):
            href = escape(post_url(self.web_url, handle, last_segment(uri)))
            detail = (
                f'<a href="{href}" target="_blank" rel="noopener noreferrer" '
                f'class="bsky-footer-link">View on Bluesky</a>'
            )
        else:
            detail = "<p>The post information was incomplete or could not be parsed.</p>"

        return f"""<div class="bsky-embed-container" style="max-width: {escape(width)};">
  <style>{embed_css(theme)}</style>
  <div class="bsky-embed">
    <div class="bsky-content bsky-notice">
      <p>This Bluesky post couldn't be displayed properly.</p>
      {detail}
    </div>
  </div>
</div>"""

    # =========================================================================
    # Media
    # =========================================================================

    def _render_media(self, record: PostRecord) -> str:
        blocks = []
        for block in record.media:
            if isinstance(block, ImagesMedia):
                blocks.append(self._render_images(block))
            elif isinstance(block, ExternalMedia):
                blocks.append(self._render_external(block))
            elif isinstance(block, QuoteMedia):
                blocks.append(self._render_quote(block))
            elif isinstance(block, VideoMedia):
                blocks.append(self._render_video(block))
        return "\n".join(b for b in blocks if b)

    def _render_images(self, media: ImagesMedia) -> str:
        items = []
        for image in media.images:
            alt = escape(image.alt)
            style = ""
            if image.aspect_ratio:
                style = f' style="max-width: min(100%, {image.aspect_ratio.width}px);"'
            caption = f'<div class="bsky-image-alt">{alt}</div>' if image.alt else ""
            items.append(
                f'<div class="bsky-image-container">'
                f'<img src="{escape(image.url)}" alt="{alt}" class="bsky-image" loading="lazy"{style}>'
                f"{caption}</div>"
            )
        if not items:
            return ""
        return f'<div class="bsky-images">{"".join(items)}</div>'

    def _render_external(self, media: ExternalMedia) -> str:
        title = escape(media.title)
        uri = escape(media.uri)
        thumb = (
            f'<img src="{escape(media.thumb)}" alt="{title}" class="bsky-card-image" loading="lazy">'
            if media.thumb
            else ""
        )
        description = (
            f'<div class="bsky-card-description">{escape(media.description)}</div>'
            if media.description
            else ""
        )
        return f"""<div class="bsky-card">
        {thumb}
        <div class="bsky-card-content">
          <div class="bsky-card-title">{title}</div>
          {description}
          <a href="{uri}" target="_blank" rel="noopener noreferrer" class="bsky-card-link">{uri}</a>
        </div>
      </div>"""

    def _render_quote(self, media: QuoteMedia) -> str:
        author = media.author
        avatar = (
            f'<img src="{escape(author.avatar)}" alt="{escape(author.name)}" class="bsky-quote-avatar" loading="lazy">'
            if author.avatar
            else ""
        )
        return f"""<div class="bsky-quote">
        <div class="bsky-quote-author">
          {avatar}
          <span class="bsky-quote-author-name">{escape(author.display_name or "")}</span>
          <span class="bsky-quote-author-handle">@{escape(author.handle)}</span>
        </div>
        <div class="bsky-quote-content">{format_text(media.text, self.web_url)}</div>
      </div>"""

    def _render_video(self, media: VideoMedia) -> str:
        ratio = media.aspect_ratio
        aspect = f"{ratio.width} / {ratio.height}"
        poster = escape(media.thumbnail or "")

        if media.playlist:
            element_id = escape(media.element_id)
            js_id = _js_string(media.element_id)
            js_playlist = _js_string(media.playlist)
            return f"""<div class="bsky-video-container">
        <video id="{element_id}" controls preload="metadata" poster="{poster}" class="bsky-video" style="aspect-ratio: {aspect};">
          Your browser does not support the video tag.
        </video>
        <script>
          document.addEventListener('DOMContentLoaded', function() {{
            var video = document.getElementById({js_id});
            if (!video) return;
            if (typeof Hls !== 'undefined' && Hls.isSupported()) {{
              var hls = new Hls();
              hls.loadSource({js_playlist});
              hls.attachMedia(video);
            }} else if (video.canPlayType('application/vnd.apple.mpegurl')) {{
              video.src = {js_playlist};
            }}
          }});
        </script>
      </div>"""

        if media.thumbnail:
            return f"""<div class="bsky-video-container">
        <div class="bsky-thumbnail-container" style="aspect-ratio: {aspect};">
          <img src="{poster}" alt="Video thumbnail" class="bsky-image">
          <div class="bsky-play-button">&#9654;</div>
        </div>
      </div>"""
        return ""

    # =========================================================================
    # Pages
    # =========================================================================

    def render_standalone_page(
        self,
        post: PostInput,
        theme: Optional[str] = None,
        width: Optional[str] = None,
    ) -> str:
        """Full HTML document wrapping one post, with Open Graph tags."""
        theme, width = self._options(theme, width)
        try:
            record = self._record(post)
        except Exception as exc:  # noqa: BLE001
            logger.error("standalone_page_failed", error=str(exc))
            return self.render_error_page(
                "The post could not be rendered properly. It may have been deleted "
                "or you may not have permission to view it.",
                theme,
            )

        author = record.author
        handle = escape(author.handle)
        name = escape(author.display_name or "Bluesky User")
        description = escape(record.text or "Bluesky post")
        og_image = (
            f'<meta property="og:image" content="{escape(author.avatar)}">' if author.avatar else ""
        )
        hls = f'<script src="{HLS_SCRIPT}"></script>' if record.has_video else ""
        container_width = "600px" if width == "100%" else escape(width)

        return f"""<!DOCTYPE html>
<html>
<head>
  <title>Bluesky Post by @{handle}</title>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <meta property="og:title" content="Post by {name} (@{handle})">
  <meta property="og:site_name" content="Bluesky">
  <meta property="og:type" content="article">
  <meta property="og:description" content="{description}">
  {og_image}
  {hls}
  <style>
    body {{
      font-family: {FONT_STACK};
      margin: 0;
      padding: 20px;
      background-color: {palette(theme).page_background};
      display: flex;
      justify-content: center;
    }}
    .container {{ max-width: {container_width}; width: 100%; }}
    @media (max-width: 600px) {{ body {{ padding: 10px; }} }}
  </style>
</head>
<body>
  <div class="container">
    {self.render(record, theme, width)}
  </div>
</body>
</html>"""

    def render_error_page(self, message: str, theme: Optional[str] = None) -> str:
        """Small error document with a link back to the home page."""
        theme, _ = self._options(theme, None)
        p = palette(theme)
        return f"""<!DOCTYPE html>
<html>
<head>
  <title>Bluesky Post</title>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body {{
      font-family: {FONT_STACK};
      margin: 0;
      padding: 20px;
      background-color: {p.page_background};
      color: {p.text};
      display: flex;
      justify-content: center;
      align-items: center;
      min-height: 100vh;
    }}
    .error-container {{
      max-width: 500px;
      width: 100%;
      padding: 30px;
      background-color: {p.background};
      border-radius: 12px;
      box-shadow: 0 4px 12px rgba(0, 0, 0, 0.1);
      text-align: center;
    }}
    .error-title {{ color: {ERROR_COLOR}; margin-bottom: 20px; }}
    .back-link {{
      display: inline-block;
      color: white;
      background-color: {p.link};
      text-decoration: none;
      padding: 10px 20px;
      border-radius: 30px;
      margin-top: 20px;
    }}
  </style>
</head>
<body>
  <div class="error-container">
    <h2 class="error-title">Could not display this Bluesky post</h2>
    <p>{escape(message)}</p>
    <a href="/" class="back-link">Back to Home</a>
  </div>
</body>
</html>"""

    # =========================================================================
    # Feed placeholders
    # =========================================================================

    def _notice(self, body: str, theme: str, width: str = "100%") -> str:
        return f"""<div class="bsky-embed-container" style="max-width: {escape(width)};">
  <style>{embed_css(theme)}</style>
  <div class="bsky-embed">
    <div class="bsky-content bsky-notice">
      {body}
    </div>
  </div>
</div>"""

    def render_item_error(
        self, message: str, theme: Optional[str] = None, width: Optional[str] = None
    ) -> str:
        theme, width = self._options(theme, width)
        return self._notice(
            "<p>This post couldn't be displayed</p>"
            f'<p class="bsky-notice-detail">Error: {escape(message or "Unknown error")}</p>',
            theme,
            width,
        )

    def render_no_posts(self, handle: str, theme: Optional[str] = None) -> str:
        theme, _ = self._options(theme, None)
        return self._notice(
            "<h3>No Posts Found</h3>"
            f"<p>No posts from @{escape(handle)} were found.</p>"
            '<p class="bsky-notice-detail">This user may not have posted anything yet.</p>',
            theme,
        )

    def render_feed_error(
        self, message: str, theme: Optional[str] = None, authored_only: bool = False
    ) -> str:
        theme, _ = self._options(theme, None)
        noun = "Posts" if authored_only else "Feed"
        message = message or f"Could not load {noun.lower()} at this time."
        return self._notice(
            f'<h3 class="bsky-notice-error">Error Loading {noun}</h3>'
            f"<p>{escape(message)}</p>"
            '<p class="bsky-notice-detail">Please try again later or check if the username is correct.</p>',
            theme,
        )

    # =========================================================================
    # oEmbed
    # =========================================================================

    def oembed(
        self,
        post: PostInput,
        maxwidth: Optional[int] = None,
        theme: Optional[str] = None,
    ) -> dict[str, Any]:
        """oEmbed 1.0 "rich" response for a post."""
        record = self._record(post)
        maxwidth = maxwidth or self.max_width
        author = record.author
        return {
            "version": "1.0",
            "type": "rich",
            "provider_name": "Bluesky",
            "provider_url": self.web_url,
            "author_name": author.name,
            "author_url": profile_url(self.web_url, author.handle),
            "title": f"Post by {author.name} (@{author.handle})",
            "html": self.render(record, theme, f"{maxwidth}px"),
            "width": maxwidth,
            "height": None,
        }
