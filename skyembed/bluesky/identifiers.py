"""Handle, DID and post identifier parsing.

Two post identifier forms are accepted:

    at://{did}/app.bsky.feed.post/{rkey}
    https://<host>/profile/{handle-or-did}/post/{rkey}
"""

from __future__ import annotations

import re
from typing import NamedTuple

from .errors import InvalidIdentifierError
from .models import POST_COLLECTION

_AT_URI_RE = re.compile(
    r"^at://(?P<repo>[^/?#]+)/(?P<collection>[^/?#]+)/(?P<rkey>[^/?#]+)$"
)
_POST_URL_RE = re.compile(
    r"^https?://[^/?#]+/profile/(?P<actor>[^/?#]+)/post/(?P<rkey>[^/?#]+)/?(?:[?#].*)?$"
)


class PostLocator(NamedTuple):
    """Actor (handle or DID) plus record key of a post."""

    actor: str
    rkey: str


def clean_handle(handle: str) -> str:
    """Strip whitespace and an optional leading '@'."""
    return handle.strip().lstrip("@")


def is_did(value: str) -> bool:
    return value.startswith("did:")


def has_domain(handle: str) -> bool:
    """A handle must look like name.domain."""
    name, _, domain = handle.rpartition(".")
    return bool(name) and bool(domain)


def parse_post_url(url: str) -> PostLocator:
    """Parse a web profile URL into (actor, rkey)."""
    match = _POST_URL_RE.match(url.strip())
    if not match:
        raise InvalidIdentifierError(
            f"Invalid Bluesky URL format: {url}. "
            "Expected format: https://bsky.app/profile/username/post/postid"
        )
    return PostLocator(clean_handle(match.group("actor")), match.group("rkey"))


def parse_at_uri(uri: str) -> PostLocator:
    """Parse a canonical post AT URI into (repo, rkey)."""
    match = _AT_URI_RE.match(uri.strip())
    if not match or match.group("collection") != POST_COLLECTION:
        raise InvalidIdentifierError(f"Invalid post AT URI: {uri}")
    return PostLocator(match.group("repo"), match.group("rkey"))


def parse_post_identifier(identifier: str) -> PostLocator:
    """Accept either identifier form; anything else is rejected."""
    identifier = identifier.strip()
    if identifier.startswith("at://"):
        return parse_at_uri(identifier)
    if identifier.startswith(("https://", "http://")):
        return parse_post_url(identifier)
    raise InvalidIdentifierError(f"Invalid post identifier format: {identifier}")


def build_post_uri(did: str, rkey: str) -> str:
    return f"at://{did}/{POST_COLLECTION}/{rkey}"


def last_segment(uri: str) -> str:
    return uri.rstrip("/").rsplit("/", 1)[-1]


def profile_url(web_url: str, handle: str) -> str:
    return f"{web_url.rstrip('/')}/profile/{handle}"


def post_url(web_url: str, handle: str, post_id: str) -> str:
    return f"{profile_url(web_url, handle)}/post/{post_id}"
