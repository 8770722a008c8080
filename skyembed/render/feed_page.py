"""Feed page wrapper around rendered posts."""

from __future__ import annotations

from html import escape
from typing import Literal, Optional, Sequence
from urllib.parse import urlencode

from ..bluesky.identifiers import profile_url
from ..bluesky.models import Profile, RenderedFeed
from .styles import FONT_STACK, palette

PageType = Literal["feed", "user-posts"]

DEFAULT_AVATAR = "https://bsky.app/static/img/default-avatar.png"


def _profile_header(profile: Profile, handle: str, theme: str) -> str:
    p = palette(theme)
    description = (
        f'<div class="profile-description">{escape(profile.description)}</div>'
        if profile.description
        else ""
    )
    return f"""<div class="user-profile" style="border: 1px solid {p.border}; background-color: {p.panel};">
      <img src="{escape(profile.avatar or DEFAULT_AVATAR)}" alt="{escape(profile.display_name or profile.handle)}" class="profile-avatar">
      <div>
        <div class="profile-name">{escape(profile.display_name or handle)}</div>
        <div class="profile-handle">@{escape(handle)}</div>
        {description}
      </div>
    </div>"""


def _suggested(profiles: Sequence[Profile], web_url: str, theme: str) -> str:
    if not profiles:
        return ""
    p = palette(theme)
    users = "\n".join(
        f"""<div class="suggested-user" style="background-color: {p.panel};">
        <img src="{escape(user.avatar or DEFAULT_AVATAR)}" alt="{escape(user.display_name or user.handle)}" class="suggested-avatar">
        <div style="flex: 1;">
          <div class="profile-name">{escape(user.display_name or "")}</div>
          <div class="profile-handle">@{escape(user.handle)}</div>
        </div>
        <a href="{escape(profile_url(web_url, user.handle))}" target="_blank" class="view-btn">View</a>
      </div>"""
        for user in profiles
    )
    return f"""<div class="suggested-users-section" style="border: 1px solid {p.border}; background-color: {p.panel};">
      <h3>Suggested Profiles</h3>
      {users}
    </div>"""


def _empty_feed(theme: str) -> str:
    p = palette(theme)
    return f"""<div class="feed-empty">
      <h3 style="color: {p.secondary};">No posts found</h3>
      <p>This feed appears to be empty, the user hasn't posted yet, or the Bluesky API is temporarily having issues.</p>
      <a href="/" class="load-more-btn">Back to Home</a>
    </div>"""


def render_feed_page(
    rendered: RenderedFeed,
    handle: str,
    theme: str = "light",
    page_type: PageType = "feed",
    profile: Optional[Profile] = None,
    suggested: Sequence[Profile] = (),
    web_url: str = "https://bsky.app",
    title: Optional[str] = None,
) -> str:
    """Full HTML page for a rendered feed.

    The "load more" link is emitted only when the feed has a cursor and did
    not fail.
    """
    p = palette(theme)
    heading = f"Posts by @{handle}" if page_type == "user-posts" else f"Bluesky Feed: @{handle}"
    title = title or f"Bluesky Feed for @{handle}"

    if rendered.posts:
        posts_html = '\n<div class="feed-separator"></div>\n'.join(rendered.posts)
    else:
        posts_html = _empty_feed(theme)

    header = _profile_header(profile, handle, theme) if profile else ""

    load_more = ""
    if rendered.cursor and not rendered.failed:
        query = urlencode({"handle": handle, "theme": theme, "cursor": rendered.cursor})
        load_more = f'<a href="/{page_type}?{escape(query)}" class="load-more-btn">Load More Posts</a>'

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
  <style>
    * {{ box-sizing: border-box; margin: 0; padding: 0; }}
    body {{
      font-family: {FONT_STACK};
      background-color: {p.page_background};
      color: {p.text};
      line-height: 1.5;
    }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 0 15px; }}
    .feed-header {{
      position: sticky;
      top: 0;
      z-index: 100;
      padding: 15px 0;
      background-color: {p.panel};
      border-bottom: 1px solid {p.border};
      margin-bottom: 15px;
    }}
    .feed-title {{ font-size: 18px; font-weight: bold; }}
    .feed-separator {{ height: 10px; }}
    .feed-empty {{ text-align: center; padding: 40px 20px; }}
    .user-profile, .suggested-user {{ display: flex; align-items: center; padding: 12px; border-radius: 12px; margin: 15px 0; }}
    .profile-avatar {{ width: 60px; height: 60px; border-radius: 50%; margin-right: 15px; }}
    .suggested-avatar {{ width: 40px; height: 40px; border-radius: 50%; margin-right: 10px; }}
    .profile-name {{ font-weight: bold; }}
    .profile-handle, .profile-description {{ color: {p.secondary}; font-size: 14px; }}
    .suggested-users-section {{ margin-top: 20px; padding: 15px; border-radius: 12px; }}
    .view-btn {{ text-decoration: none; padding: 6px 12px; background-color: {p.link}; color: white; border-radius: 18px; font-size: 14px; }}
    .load-more-btn {{
      display: block;
      padding: 10px;
      margin: 20px 0;
      background-color: {p.link};
      color: white;
      border-radius: 8px;
      text-align: center;
      text-decoration: none;
    }}
    .load-more-btn:hover {{ background-color: {p.link_hover}; }}
    @media (max-width: 768px) {{ .container {{ padding: 0 10px; }} }}
  </style>
</head>
<body>
  <div class="feed-header">
    <div class="container">
      <h1 class="feed-title">{escape(heading)}</h1>
      {header}
    </div>
  </div>
  <div class="container">
    <div class="feed">
      {posts_html}
      {load_more}
    </div>
    <div class="sidebar">
      {_suggested(suggested, web_url, theme)}
    </div>
  </div>
</body>
</html>"""
