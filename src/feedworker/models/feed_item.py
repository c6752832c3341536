"""Feed item models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

# Column limits shared by every parser
MAX_TITLE_LENGTH = 500
MAX_SUMMARY_LENGTH = 2000
MAX_URL_LENGTH = 1200
MAX_AUTHOR_LENGTH = 200
MAX_EXTERNAL_ID_LENGTH = 300
MAX_EMBED_URL_LENGTH = 200


class FeedItemKind(str, Enum):
    """Kind of content unit."""

    ARTICLE = "article"
    VIDEO = "video"


class FeedItemCandidate(BaseModel):
    """A parsed item that has not been deduplicated or stored yet."""

    source_id: str
    external_id: str = Field(max_length=MAX_EXTERNAL_ID_LENGTH)
    kind: FeedItemKind
    title: str = Field(max_length=MAX_TITLE_LENGTH)
    summary: str | None = Field(default=None, max_length=MAX_SUMMARY_LENGTH)
    link_url: str = Field(max_length=MAX_URL_LENGTH)
    image_url: str | None = Field(default=None, max_length=MAX_URL_LENGTH)
    author: str | None = Field(default=None, max_length=MAX_AUTHOR_LENGTH)
    published_at: datetime
    youtube_video_id: str | None = None
    embed_url: str | None = Field(default=None, max_length=MAX_EMBED_URL_LENGTH)


class FeedItem(FeedItemCandidate):
    """Stored feed item as consumed by the publishing API."""

    id: str
    imported_at: datetime
    is_active: bool = True
