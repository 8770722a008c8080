"""Degraded profile/feed policy for allow-listed handles.

Some accounts (custom-domain handles in particular) intermittently fail
resolution or profile lookups. Handles listed in `fallback_handles` get a
handle-only profile and an empty feed page instead of an error.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from .identifiers import clean_handle
from .models import FeedPage, Profile

logger = structlog.get_logger()


class DegradedPolicy:
    def __init__(
        self,
        handles: Iterable[str] = (),
        home_handle: Optional[str] = None,
        home_did: Optional[str] = None,
    ):
        self.handles = {clean_handle(h).lower() for h in handles if h}
        self.home_handle = clean_handle(home_handle) if home_handle else None
        self.home_did = home_did

    def covers(self, handle: str) -> bool:
        return clean_handle(handle).lower() in self.handles

    def profile(self, handle: str) -> Profile:
        handle = clean_handle(handle)
        logger.warning("degraded_profile_used", handle=handle)
        did = self.home_did if handle == self.home_handle and self.home_did else ""
        return Profile(did=did, handle=handle, display_name=handle, degraded=True)

    def feed(self, handle: str) -> FeedPage:
        logger.warning("degraded_feed_used", handle=clean_handle(handle))
        return FeedPage(feed=[], cursor=None)
