"""Data models for Bluesky API payloads after normalization."""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

POST_COLLECTION = "app.bsky.feed.post"
MAX_POST_LENGTH = 300


class Author(BaseModel):
    """Post author as embedded in a post view."""

    did: str = ""
    handle: str = "unknown.user"
    display_name: Optional[str] = None
    avatar: Optional[str] = None

    @property
    def name(self) -> str:
        return self.display_name or self.handle or "Unknown User"


class AspectRatio(BaseModel):
    width: int = 16
    height: int = 9


class Image(BaseModel):
    url: str
    alt: str = ""
    aspect_ratio: Optional[AspectRatio] = None


class ImagesMedia(BaseModel):
    kind: Literal["images"] = "images"
    images: list[Image] = Field(default_factory=list)


class ExternalMedia(BaseModel):
    """Link card."""

    kind: Literal["external"] = "external"
    uri: str
    title: str = ""
    description: str = ""
    thumb: Optional[str] = None


class QuoteMedia(BaseModel):
    """Quoted post."""

    kind: Literal["quote"] = "quote"
    author: Author = Field(default_factory=Author)
    text: str = ""
    uri: Optional[str] = None


class VideoMedia(BaseModel):
    kind: Literal["video"] = "video"
    playlist: Optional[str] = None
    thumbnail: Optional[str] = None
    aspect_ratio: AspectRatio = Field(default_factory=AspectRatio)
    element_id: str = "bsky-video"


MediaBlock = Annotated[
    Union[ImagesMedia, ExternalMedia, QuoteMedia, VideoMedia],
    Field(discriminator="kind"),
]


class PostRecord(BaseModel):
    """A post as read from upstream, with every field resolved."""

    uri: Optional[str] = None
    cid: Optional[str] = None
    post_id: str = ""
    author: Author = Field(default_factory=Author)
    text: str = ""
    timestamp: datetime
    media: list[MediaBlock] = Field(default_factory=list)
    has_video: bool = False

    # Original upstream payload, kept for the raw JSON endpoint
    raw: dict[str, Any] = Field(default_factory=dict)


class FeedPage(BaseModel):
    """One page of upstream-shaped feed items plus the pagination cursor."""

    feed: list[Any] = Field(default_factory=list)
    cursor: Optional[str] = None


class FeedItem(BaseModel):
    """Presentation flags for a single feed entry."""

    post: Optional[dict[str, Any]] = None
    is_reply: bool = False
    is_repost: bool = False


class Profile(BaseModel):
    """Bluesky actor profile."""

    did: str = ""
    handle: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[str] = None
    followers_count: Optional[int] = None
    follows_count: Optional[int] = None
    posts_count: Optional[int] = None

    # True when produced by the degraded-profile policy instead of upstream
    degraded: bool = False


class PostRef(BaseModel):
    """Reference to a newly created post."""

    uri: str
    cid: str


class PublishRequest(BaseModel):
    """Request model for publishing a post."""

    text: str = Field(..., min_length=1, max_length=MAX_POST_LENGTH)


class RenderedFeed(BaseModel):
    """Rendered feed markup returned to the route layer."""

    posts: list[str] = Field(default_factory=list)
    cursor: Optional[str] = None
    failed: bool = False
