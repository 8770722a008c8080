"""Bluesky post and feed embedding.

Fetches posts and feeds from the Bluesky API, caches them in process and
renders them into embeddable HTML, oEmbed payloads and feed pages.
"""

__version__ = "0.1.0"
