"""Internal community post models."""

from datetime import datetime

from pydantic import BaseModel, Field


class PostCreate(BaseModel):
    """Data required to create an internal post."""

    user_id: str | None = Field(default=None, description="Author user id")
    title: str = Field(description="Post title")
    content: str | None = Field(default=None, description="Post body")
    image_url: str | None = Field(default=None, description="Attached image URL")
    is_verified: bool = Field(default=False, description="Moderation flag")


class Post(PostCreate):
    """Full internal post record."""

    id: str
    author_name: str | None = None
    created_at: datetime
