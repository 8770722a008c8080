"""Light/dark palettes and the embed stylesheet."""

from typing import NamedTuple


class Palette(NamedTuple):
    background: str
    text: str
    secondary: str
    border: str
    link: str
    link_hover: str
    page_background: str
    panel: str


PALETTES = {
    "light": Palette(
        background="#ffffff",
        text="#000000",
        secondary="#657786",
        border="#e1e8ed",
        link="#1da1f2",
        link_hover="#0d8bd9",
        page_background="#f7f9fa",
        panel="#ffffff",
    ),
    "dark": Palette(
        background="#15202b",
        text="#ffffff",
        secondary="#8899a6",
        border="#38444d",
        link="#1d9bf0",
        link_hover="#1a8cd8",
        page_background="#192734",
        panel="#192734",
    ),
}

ERROR_COLOR = "#e0245e"
FONT_STACK = "-apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif"


def palette(theme: str) -> Palette:
    """Palette for a theme name; unknown names get the light palette."""
    return PALETTES.get(theme, PALETTES["light"])


def embed_css(theme: str) -> str:
    p = palette(theme)
    return f"""
.bsky-embed {{
  border: 1px solid {p.border};
  border-radius: 12px;
  overflow: hidden;
  font-family: {FONT_STACK};
  background-color: {p.background};
  color: {p.text};
}}
.bsky-content {{ padding: 16px; }}
.bsky-author {{ display: flex; align-items: center; margin-bottom: 12px; }}
.bsky-avatar {{
  width: 48px;
  height: 48px;
  border-radius: 50%;
  margin-right: 10px;
  object-fit: cover;
  background-color: {p.border};
}}
.bsky-author-info {{ display: flex; flex-direction: column; }}
.bsky-author-link {{ text-decoration: none; }}
.bsky-author-name {{ font-weight: bold; color: {p.text}; }}
.bsky-author-handle {{ color: {p.secondary}; }}
.bsky-post-text {{ margin-bottom: 12px; white-space: pre-wrap; word-break: break-word; }}
.bsky-post-date {{ color: {p.secondary}; font-size: 14px; margin-bottom: 12px; }}
.bsky-link, .bsky-mention {{ color: {p.link}; text-decoration: none; }}
.bsky-link:hover, .bsky-mention:hover {{ text-decoration: underline; }}

/* Media */
.bsky-images, .bsky-video-container {{
  display: grid;
  gap: 8px;
  margin-bottom: 12px;
  width: 100%;
}}
.bsky-images {{ grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); }}
.bsky-image-container {{ border-radius: 8px; overflow: hidden; position: relative; max-height: 600px; }}
.bsky-image {{ width: 100%; height: auto; object-fit: contain; border-radius: 8px; display: block; }}
.bsky-image-alt {{ color: {p.secondary}; font-size: 12px; margin-top: 6px; line-height: 1.4; }}
.bsky-video {{ width: 100%; height: auto; border-radius: 8px; background-color: #000; max-height: 600px; }}
.bsky-thumbnail-container {{ position: relative; border-radius: 8px; overflow: hidden; }}
.bsky-play-button {{
  position: absolute;
  top: 50%;
  left: 50%;
  transform: translate(-50%, -50%);
  background-color: rgba(0, 0, 0, 0.7);
  color: white;
  width: 60px;
  height: 60px;
  border-radius: 50%;
  display: flex;
  align-items: center;
  justify-content: center;
  font-size: 24px;
}}

/* Link cards and quotes */
.bsky-card, .bsky-quote {{ border: 1px solid {p.border}; border-radius: 8px; margin-bottom: 12px; overflow: hidden; }}
.bsky-card-image {{ width: 100%; max-height: 250px; object-fit: cover; }}
.bsky-card-content {{ padding: 12px; }}
.bsky-card-title {{ font-weight: bold; margin-bottom: 4px; }}
.bsky-card-description {{ color: {p.secondary}; margin-bottom: 8px; font-size: 14px; }}
.bsky-card-link {{
  color: {p.secondary};
  font-size: 14px;
  text-decoration: none;
  display: block;
  overflow: hidden;
  text-overflow: ellipsis;
  white-space: nowrap;
}}
.bsky-quote {{ padding: 12px; }}
.bsky-quote-author {{ display: flex; align-items: center; margin-bottom: 8px; }}
.bsky-quote-avatar {{ width: 20px; height: 20px; border-radius: 50%; margin-right: 8px; object-fit: cover; }}
.bsky-quote-author-name {{ font-weight: bold; }}
.bsky-quote-author-handle {{ color: {p.secondary}; margin-left: 4px; }}
.bsky-quote-content {{ white-space: pre-wrap; word-break: break-word; }}

.bsky-footer {{ text-align: right; margin-top: 12px; }}
.bsky-footer-link {{ color: {p.link}; text-decoration: none; font-size: 14px; }}
.bsky-notice {{ text-align: center; padding: 20px; }}
.bsky-notice-detail {{ font-size: 14px; color: {p.secondary}; }}
.bsky-notice-error {{ color: {ERROR_COLOR}; }}
"""
