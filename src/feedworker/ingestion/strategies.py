"""Per-kind fetch, parse and scheduling behaviour.

The orchestrator is written once against SourceStrategy; each source kind
plugs in how it selects due sources, turns a source into candidate items,
and which backoff policy applies.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from feedworker.db.repository import FeedItemRepository, NewsSourceRepository, PostRepository
from feedworker.ingestion.errors import FetchFailedError
from feedworker.ingestion.http import FetchClient, HttpError, NotModified, Success, Throttled
from feedworker.ingestion.internal import posts_to_candidates
from feedworker.ingestion.rss import parse_rss
from feedworker.ingestion.scheduler import (
    BackoffPolicy,
    schedule_failure,
    schedule_success,
    schedule_throttled,
)
from feedworker.ingestion.youtube import channel_feed_url, parse_youtube
from feedworker.models.feed_item import FeedItemCandidate
from feedworker.models.source import NewsSource, ScheduleUpdate, SourceKind

logger = logging.getLogger(__name__)


class FetchStatus(str, Enum):
    """How a fetch ended when it did not raise."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"
    THROTTLED = "throttled"


@dataclass
class SourceFetch:
    """Result of fetching and parsing one source."""

    status: FetchStatus
    candidates: list[FeedItemCandidate] = field(default_factory=list)
    etag: str | None = None
    last_modified: str | None = None
    message: str | None = None


class SourceStrategy(ABC):
    """Kind-specific behaviour plugged into the run orchestrator."""

    kind: SourceKind
    label: str

    def __init__(
        self,
        sources: NewsSourceRepository,
        items: FeedItemRepository,
        policy: BackoffPolicy,
        max_items: int,
    ) -> None:
        self.sources = sources
        self.items = items
        self.policy = policy
        self.max_items = max(1, max_items)

    def select_due(self, now: datetime, limit: int) -> list[NewsSource]:
        """Sources of this kind that should be processed in this tick."""
        return self.sources.list_due(self.kind, now, limit)

    @abstractmethod
    async def fetch_and_parse(self, source: NewsSource, now: datetime) -> SourceFetch:
        """Fetch a source and parse it into candidates.

        Hard failures raise; throttling and 304 come back as a status.
        """

    def compute_schedule(
        self,
        source: NewsSource,
        fetch: SourceFetch | None,
        now: datetime,
        error: str | None = None,
    ) -> ScheduleUpdate:
        """Map a processing outcome to the scheduling fields to persist."""
        if fetch is None:
            return schedule_failure(source, self.policy, now, error or "unknown error")
        if fetch.status == FetchStatus.THROTTLED:
            return schedule_throttled(source, self.policy, now, fetch.message or "throttled")
        return schedule_success(
            source,
            self.policy,
            now,
            etag=fetch.etag,
            last_modified=fetch.last_modified,
        )


class FeedStrategy(SourceStrategy):
    """Shared conditional-GET flow for kinds backed by an HTTP feed."""

    def __init__(
        self,
        sources: NewsSourceRepository,
        items: FeedItemRepository,
        policy: BackoffPolicy,
        max_items: int,
        client: FetchClient,
    ) -> None:
        super().__init__(sources, items, policy, max_items)
        self.client = client

    @abstractmethod
    def feed_url(self, source: NewsSource) -> str:
        """URL to fetch for a source."""

    @abstractmethod
    def parse(self, source: NewsSource, content: bytes, now: datetime) -> list[FeedItemCandidate]:
        """Parse a fetched payload."""

    async def fetch_and_parse(self, source: NewsSource, now: datetime) -> SourceFetch:
        url = self.feed_url(source)

        # Validators are only trusted while the catalog still holds this
        # source's items; otherwise a 304 would leave the source empty forever.
        has_items = self.items.has_items(source.id)
        etag = source.last_etag if has_items else None
        last_modified = source.last_modified if has_items else None

        logger.debug(
            "%s: fetching source=%s url=%s has_items=%s", self.label, source.name, url, has_items
        )
        outcome = await self.client.fetch(url, etag=etag, last_modified=last_modified)

        match outcome:
            case NotModified():
                if not has_items:
                    logger.warning(
                        "%s: 304 but catalog empty; clearing validators source=%s",
                        self.label,
                        source.name,
                    )
                    return SourceFetch(FetchStatus.NOT_MODIFIED)
                return SourceFetch(
                    FetchStatus.NOT_MODIFIED,
                    etag=source.last_etag,
                    last_modified=source.last_modified,
                )
            case Throttled(status_code=status_code):
                return SourceFetch(
                    FetchStatus.THROTTLED,
                    etag=source.last_etag,
                    last_modified=source.last_modified,
                    message=f"Throttled by upstream (HTTP {status_code})",
                )
            case HttpError(status_code=status_code, body_excerpt=body):
                raise FetchFailedError(url, status_code, body)
            case Success(content=content, etag=new_etag, last_modified=new_last_modified):
                return SourceFetch(
                    FetchStatus.OK,
                    candidates=self.parse(source, content, now),
                    etag=new_etag,
                    last_modified=new_last_modified,
                )

        raise TypeError(f"Unexpected fetch outcome: {outcome!r}")


class RssStrategy(FeedStrategy):
    """RSS/Atom websites."""

    kind = SourceKind.RSS
    label = "RSS"

    def feed_url(self, source: NewsSource) -> str:
        return (source.rss_url or "").strip()

    def parse(self, source: NewsSource, content: bytes, now: datetime) -> list[FeedItemCandidate]:
        return parse_rss(source.id, content, self.max_items, now)


class YouTubeStrategy(FeedStrategy):
    """YouTube channels via their public Atom feed.

    The FetchClient handed in here carries the process-wide rate limiter.
    """

    kind = SourceKind.YOUTUBE
    label = "YT"

    def feed_url(self, source: NewsSource) -> str:
        return channel_feed_url(source.youtube_channel_id or "")

    def parse(self, source: NewsSource, content: bytes, now: datetime) -> list[FeedItemCandidate]:
        return parse_youtube(source.id, content, self.max_items, now)


class InternalPostsStrategy(SourceStrategy):
    """Verified community posts read straight from the catalog."""

    kind = SourceKind.INTERNAL
    label = "INTERNAL"

    def __init__(
        self,
        sources: NewsSourceRepository,
        items: FeedItemRepository,
        policy: BackoffPolicy,
        max_items: int,
        posts: PostRepository,
        base_url: str,
    ) -> None:
        super().__init__(sources, items, policy, max_items)
        self.posts = posts
        self.base_url = base_url

    async def fetch_and_parse(self, source: NewsSource, now: datetime) -> SourceFetch:
        posts = self.posts.list_verified(self.max_items)
        return SourceFetch(
            FetchStatus.OK,
            candidates=posts_to_candidates(source.id, posts, self.base_url),
        )
