"""Embed (media) extraction.

Upstream has shipped several incompatible shapes for the same embed: hydrated
views (`app.bsky.embed.images#view`) at `post.embed`, raw record embeds with
blob references at `post.record.embed`, and untagged variants. Both locations
are probed and only the first block found per media kind is kept, so a post
that carries the same image in both places renders it once.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Optional
from urllib.parse import quote

from .models import (
    AspectRatio,
    Author,
    ExternalMedia,
    Image,
    ImagesMedia,
    QuoteMedia,
    VideoMedia,
)

IMAGES = "app.bsky.embed.images"
EXTERNAL = "app.bsky.embed.external"
RECORD = "app.bsky.embed.record"
RECORD_WITH_MEDIA = "app.bsky.embed.recordWithMedia"
VIDEO = "app.bsky.embed.video"

CDN_URL = "https://cdn.bsky.app/img/feed_fullsize/plain"
VIDEO_URL = "https://video.bsky.app/watch"


def _base_type(embed: Mapping) -> str:
    """'app.bsky.embed.images#view' -> 'app.bsky.embed.images'."""
    tag = embed.get("$type")
    if not isinstance(tag, str):
        return ""
    return tag.split("#", 1)[0]


def _aspect_ratio(value: Any) -> Optional[AspectRatio]:
    if not isinstance(value, Mapping):
        return None
    width, height = value.get("width"), value.get("height")
    if isinstance(width, int) and isinstance(height, int) and width > 0 and height > 0:
        return AspectRatio(width=width, height=height)
    return None


def _blob_cid(blob: Any) -> Optional[str]:
    if not isinstance(blob, Mapping):
        return None
    ref = blob.get("ref")
    if isinstance(ref, Mapping):
        return ref.get("$link")
    if isinstance(ref, str):
        return ref
    return None


def _image_url(image: Any, did: str) -> Optional[str]:
    if isinstance(image, str):
        return image
    if not isinstance(image, Mapping):
        return None
    for key in ("fullsize", "thumb", "url"):
        if image.get(key):
            return image[key]
    blob = image.get("image")
    if isinstance(blob, Mapping):
        if blob.get("url"):
            return blob["url"]
        cid = _blob_cid(blob)
        if cid and did:
            return f"{CDN_URL}/{did}/{cid}@jpeg"
    return None


def _images(images: Any, did: str) -> Optional[ImagesMedia]:
    if not isinstance(images, list):
        return None
    parsed = []
    for image in images:
        url = _image_url(image, did)
        if not url:
            continue
        alt = image.get("alt") if isinstance(image, Mapping) else None
        parsed.append(
            Image(
                url=url,
                alt=alt or "",
                aspect_ratio=_aspect_ratio(image.get("aspectRatio"))
                if isinstance(image, Mapping)
                else None,
            )
        )
    return ImagesMedia(images=parsed) if parsed else None


def _external(external: Any) -> Optional[ExternalMedia]:
    if not isinstance(external, Mapping) or not external.get("uri"):
        return None
    thumb = external.get("thumb")
    return ExternalMedia(
        uri=external["uri"],
        title=external.get("title") or "",
        description=external.get("description") or "",
        thumb=thumb if isinstance(thumb, str) else None,
    )


def _quote(record: Any) -> Optional[QuoteMedia]:
    # Strong refs ({uri, cid}) carry no author and cannot be displayed
    if not isinstance(record, Mapping) or not isinstance(record.get("author"), Mapping):
        return None
    author = record["author"]
    value = record.get("value") if isinstance(record.get("value"), Mapping) else {}
    nested = record.get("record") if isinstance(record.get("record"), Mapping) else {}
    text = value.get("text") or nested.get("text") or record.get("text") or ""
    return QuoteMedia(
        author=Author(
            did=author.get("did") or "",
            handle=author.get("handle") or "",
            display_name=author.get("displayName"),
            avatar=author.get("avatar"),
        ),
        text=str(text),
        uri=record.get("uri"),
    )


def _video(embed: Mapping, post: Mapping, did: str) -> Optional[VideoMedia]:
    post_cid = post.get("cid") or ""
    element_id = f"bsky-video-{post_cid or 'post'}"
    if embed.get("playlist") or embed.get("thumbnail"):
        return VideoMedia(
            playlist=embed.get("playlist") or None,
            thumbnail=embed.get("thumbnail") or None,
            aspect_ratio=_aspect_ratio(embed.get("aspectRatio")) or AspectRatio(),
            element_id=element_id,
        )

    # Raw record embed: rebuild the CDN URLs from the blob reference
    cid = _blob_cid(embed.get("video")) or post_cid
    if not (cid and did):
        return None
    base = f"{VIDEO_URL}/{quote(did, safe='')}/{cid}"
    video = embed.get("video") if isinstance(embed.get("video"), Mapping) else {}
    return VideoMedia(
        playlist=f"{base}/playlist.m3u8",
        thumbnail=f"{base}/thumbnail.jpg",
        aspect_ratio=_aspect_ratio(embed.get("aspectRatio"))
        or _aspect_ratio(video.get("aspectRatio"))
        or AspectRatio(),
        element_id=element_id,
    )


def _blocks(embed: Mapping, post: Mapping, did: str) -> Iterator[Any]:
    kind = _base_type(embed)
    if kind == IMAGES:
        yield _images(embed.get("images"), did)
    elif kind == EXTERNAL:
        yield _external(embed.get("external"))
    elif kind == RECORD:
        yield _quote(embed.get("record"))
    elif kind == RECORD_WITH_MEDIA:
        outer = embed.get("record")
        if isinstance(outer, Mapping):
            yield _quote(outer.get("record")) or _quote(outer)
        media = embed.get("media")
        if isinstance(media, Mapping):
            yield from _blocks(media, post, did)
    elif kind == VIDEO:
        yield _video(embed, post, did)


def extract_media(post: Mapping) -> list:
    """Collect media blocks from both embed locations, first per kind wins."""
    author = post.get("author") if isinstance(post.get("author"), Mapping) else {}
    did = author.get("did") or ""
    record = post.get("record") if isinstance(post.get("record"), Mapping) else {}

    found: dict[str, Any] = {}
    for embed in (post.get("embed"), record.get("embed")):
        if not isinstance(embed, Mapping):
            continue
        for block in _blocks(embed, post, did):
            if block is not None:
                found.setdefault(block.kind, block)

    # Untagged images array
    embed = post.get("embed")
    if "images" not in found and isinstance(embed, Mapping):
        images = _images(embed.get("images"), did)
        if images:
            found["images"] = images

    return list(found.values())
