"""Shared payload fixtures."""

import pytest


def make_post_view(
    rkey: str = "abc",
    text: str = "Hello from Bluesky",
    handle: str = "alice.example",
    did: str = "did:plc:123",
    indexed_at: str = "2024-05-01T12:30:00.000Z",
    embed: dict = None,
    reply: dict = None,
) -> dict:
    """Post view as returned by getPosts / getAuthorFeed."""
    record = {
        "$type": "app.bsky.feed.post",
        "text": text,
        "createdAt": indexed_at,
    }
    if reply:
        record["reply"] = reply
    post = {
        "uri": f"at://{did}/app.bsky.feed.post/{rkey}",
        "cid": f"cid-{rkey}",
        "author": {
            "did": did,
            "handle": handle,
            "displayName": "Alice",
            "avatar": "https://cdn.example/avatar.jpg",
        },
        "record": record,
        "indexedAt": indexed_at,
    }
    if embed:
        post["embed"] = embed
    return post


@pytest.fixture
def post_view():
    return make_post_view()


@pytest.fixture
def author_feed():
    """Author feed page with a post, a reply and a repost."""
    return {
        "feed": [
            {"post": make_post_view("p1", "first post")},
            {
                "post": make_post_view(
                    "p2",
                    "a reply",
                    reply={"parent": {"uri": "at://did:plc:999/app.bsky.feed.post/x"}},
                ),
                "reply": {"parent": {"uri": "at://did:plc:999/app.bsky.feed.post/x"}},
            },
            {
                "post": make_post_view("p3", "someone else", handle="bob.example", did="did:plc:999"),
                "reason": {"$type": "app.bsky.feed.defs#reasonRepost"},
            },
        ],
        "cursor": "next-page",
    }
