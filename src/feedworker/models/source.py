"""News source models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    """Kind of content source."""

    RSS = "rss"
    YOUTUBE = "youtube"
    INTERNAL = "internal"


class NewsSourceCreate(BaseModel):
    """Data required to register a new source."""

    name: str = Field(max_length=200, description="Human-readable source name")
    kind: SourceKind = Field(description="Source kind: 'rss', 'youtube' or 'internal'")
    rss_url: str | None = Field(default=None, max_length=800, description="Feed URL")
    youtube_channel_id: str | None = Field(
        default=None, max_length=100, description="YouTube channel id (UC...)"
    )
    website_url: str | None = Field(default=None, max_length=500, description="Homepage")
    fetch_interval_seconds: int = Field(default=0, ge=0, description="Poll interval in seconds")
    fetch_interval_minutes: int = Field(
        default=30, ge=0, description="Legacy poll interval in minutes"
    )
    is_active: bool = Field(default=True, description="Whether the source is polled")

    @property
    def location(self) -> str | None:
        """Where this source is fetched from, if anywhere."""
        if self.kind == SourceKind.RSS:
            return self.rss_url
        if self.kind == SourceKind.YOUTUBE:
            return self.youtube_channel_id
        return None


class NewsSource(NewsSourceCreate):
    """Full source record including scheduling and caching state."""

    id: str
    last_fetched_at: datetime | None = None
    next_fetch_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    last_etag: str | None = None
    last_modified: str | None = None
    cursor: str | None = None
    created_at: datetime
    updated_at: datetime


class ScheduleUpdate(BaseModel):
    """Scheduling and caching fields written back after one processing unit."""

    last_fetched_at: datetime
    next_fetch_at: datetime
    error_count: int
    last_error: str | None = None
    last_etag: str | None = None
    last_modified: str | None = None
