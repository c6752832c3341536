"""Pydantic models for feedworker."""

from feedworker.models.feed_item import FeedItem, FeedItemCandidate, FeedItemKind
from feedworker.models.post import Post, PostCreate
from feedworker.models.source import NewsSource, NewsSourceCreate, ScheduleUpdate, SourceKind

__all__ = [
    "FeedItem",
    "FeedItemCandidate",
    "FeedItemKind",
    "NewsSource",
    "NewsSourceCreate",
    "Post",
    "PostCreate",
    "ScheduleUpdate",
    "SourceKind",
]
