"""Adapters from upstream payloads to internal models.

Every upstream call goes through one of these functions. They probe an
ordered list of candidate locations, take the first value present and never
raise because a field is missing. The only errors raised here are
`InvalidFeedShapeError` when the payload is not even an object.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from .embeds import VIDEO, extract_media
from .errors import InvalidFeedShapeError
from .identifiers import last_segment
from .models import Author, FeedItem, FeedPage, PostRecord, Profile

logger = structlog.get_logger()

TEXT_PATHS = ("record.text", "text", "value.text", "record.value.text")
TIMESTAMP_PATHS = ("indexedAt", "createdAt", "record.createdAt", "record.indexedAt")
REPOST_REASON = "app.bsky.feed.defs#reasonRepost"


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; None when absent."""
    for key in path.split("."):
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def first_present(data: Any, *paths: str) -> Any:
    for path in paths:
        value = dig(data, path)
        if value is not None:
            return value
    return None


def _parse_timestamp(ts: Any) -> Optional[datetime]:
    if not isinstance(ts, str) or not ts:
        return None
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_author(raw: Any) -> Author:
    if not isinstance(raw, Mapping):
        return Author()
    return Author(
        did=raw.get("did") or "",
        handle=raw.get("handle") or "unknown.user",
        display_name=raw.get("displayName") or None,
        avatar=raw.get("avatar") or None,
    )


def normalize_post(raw: Any, now: Optional[datetime] = None) -> PostRecord:
    """Build a PostRecord from any known post view or record shape."""
    if not isinstance(raw, Mapping):
        raise InvalidFeedShapeError(f"Post payload is not an object: {type(raw).__name__}")

    text = first_present(raw, *TEXT_PATHS)

    timestamp = None
    for path in TIMESTAMP_PATHS:
        timestamp = _parse_timestamp(dig(raw, path))
        if timestamp:
            break
    if timestamp is None:
        timestamp = now or datetime.now(timezone.utc)

    uri = first_present(raw, "uri", "record.uri")
    uri = uri if isinstance(uri, str) and uri else None
    if isinstance(raw.get("uri"), str) and raw["uri"]:
        post_id = last_segment(raw["uri"])
    else:
        post_id = raw.get("cid") or raw.get("id") or (last_segment(uri) if uri else "")

    media = extract_media(raw)
    has_video = any(block.kind == "video" for block in media) or any(
        isinstance(embed, Mapping) and str(embed.get("$type", "")).startswith(VIDEO)
        for embed in (raw.get("embed"), dig(raw, "record.embed"))
    )

    return PostRecord(
        uri=uri,
        cid=raw.get("cid") if isinstance(raw.get("cid"), str) else None,
        post_id=str(post_id),
        author=normalize_author(raw.get("author")),
        text=text if isinstance(text, str) else "",
        timestamp=timestamp,
        media=media,
        has_video=has_video,
        raw=dict(raw),
    )


def coerce_feed_page(payload: Any) -> FeedPage:
    """Find the feed array and cursor in whatever shape upstream returned.

    Probe order: `feed`, `data.feed`, then the first non-empty array value.
    """
    if isinstance(payload, FeedPage):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidFeedShapeError(
            f"Invalid feed data structure from API: {type(payload).__name__}"
        )

    feed = None
    if "feed" in payload:
        feed = payload["feed"]
        if not isinstance(feed, list):
            raise InvalidFeedShapeError("Invalid feed data structure from API: feed is not a list")
    elif isinstance(dig(payload, "data.feed"), list):
        feed = payload["data"]["feed"]
    else:
        logger.warning("unexpected_feed_format", keys=sorted(str(k) for k in payload))
        for key, value in payload.items():
            if isinstance(value, list) and value:
                logger.info("feed_array_guessed", key=key, count=len(value))
                feed = value
                break

    if feed is None:
        raise InvalidFeedShapeError("Invalid feed data structure from API: no feed array")

    cursor = first_present(payload, "cursor", "data.cursor")
    return FeedPage(feed=list(feed), cursor=cursor if isinstance(cursor, str) and cursor else None)


def feed_item(item: Any) -> FeedItem:
    """Classify a feed entry; raises on entries that are not objects."""
    if not isinstance(item, Mapping):
        raise InvalidFeedShapeError(f"Feed item is not an object: {type(item).__name__}")

    post = item.get("post")
    post = dict(post) if isinstance(post, Mapping) and post else None

    reason = item.get("reason")
    is_repost = reason == "repost" or (
        isinstance(reason, Mapping) and reason.get("$type") == REPOST_REASON
    )
    is_reply = bool(item.get("reply")) or bool(dig(post, "record.reply"))
    return FeedItem(post=post, is_reply=is_reply, is_repost=is_repost)


def normalize_profile(raw: Any, degraded: bool = False) -> Profile:
    if not isinstance(raw, Mapping) or not raw.get("handle"):
        raise InvalidFeedShapeError("Profile payload has no handle")
    return Profile(
        did=raw.get("did") or "",
        handle=raw["handle"],
        display_name=raw.get("displayName") or None,
        description=raw.get("description") or None,
        avatar=raw.get("avatar") or None,
        followers_count=raw.get("followersCount"),
        follows_count=raw.get("followsCount"),
        posts_count=raw.get("postsCount"),
        degraded=degraded,
    )


def records_to_feed_page(
    payload: Any,
    did: str,
    handle: str,
    profile: Optional[Profile] = None,
) -> FeedPage:
    """Reshape a listRecords response into feed items authored by `did`."""
    if not isinstance(payload, Mapping):
        raise InvalidFeedShapeError("Invalid listRecords response")
    records = first_present(payload, "records", "data.records") or []
    if not isinstance(records, list):
        raise InvalidFeedShapeError("Invalid listRecords response: records is not a list")

    author = {
        "did": did,
        "handle": handle,
        "displayName": (profile.display_name if profile else None) or handle,
        "avatar": profile.avatar if profile else None,
    }
    feed = []
    for record in records:
        if not isinstance(record, Mapping):
            feed.append(record)
            continue
        value = record.get("value") if isinstance(record.get("value"), Mapping) else {}
        feed.append(
            {
                "post": {
                    "uri": record.get("uri"),
                    "cid": record.get("cid"),
                    "author": author,
                    "record": dict(value),
                    "indexedAt": record.get("indexedAt") or value.get("createdAt"),
                }
            }
        )

    cursor = first_present(payload, "cursor", "data.cursor")
    return FeedPage(feed=feed, cursor=cursor if isinstance(cursor, str) and cursor else None)
