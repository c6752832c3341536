"""Database module for feedworker."""

from feedworker.db.connection import get_connection
from feedworker.db.repository import (
    FeedItemRepository,
    NewsSourceRepository,
    PostRepository,
    UserRepository,
)

__all__ = [
    "FeedItemRepository",
    "NewsSourceRepository",
    "PostRepository",
    "UserRepository",
    "get_connection",
]
