"""Tests for the per-kind run orchestrator."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
import respx

from feedworker.db.repository import (
    FeedItemRepository,
    NewsSourceRepository,
    PostRepository,
    UserRepository,
)
from feedworker.ingestion.http import RSS_ACCEPT, YOUTUBE_ACCEPT, FetchClient, build_http_client
from feedworker.ingestion.orchestrator import FAILED, RunOrchestrator
from feedworker.ingestion.scheduler import RSS_POLICY, internal_policy, youtube_policy
from feedworker.ingestion.strategies import (
    FetchStatus,
    InternalPostsStrategy,
    RssStrategy,
    SourceFetch,
    SourceStrategy,
    YouTubeStrategy,
)
from feedworker.ingestion.youtube import channel_feed_url
from feedworker.models.feed_item import FeedItem, FeedItemKind
from feedworker.models.post import PostCreate
from feedworker.models.source import NewsSource, ScheduleUpdate, SourceKind

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)
FEED_URL = "https://news.example.com/feed.xml"

FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <link>https://news.example.com/</link>
    <description>Example</description>
    <item>
      <title>First</title>
      <link>https://news.example.com/1</link>
      <guid isPermaLink="false">g1</guid>
      <pubDate>Mon, 05 Jan 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second</title>
      <link>https://news.example.com/2</link>
      <guid isPermaLink="false">g2</guid>
      <pubDate>Mon, 05 Jan 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Third</title>
      <link>https://news.example.com/3</link>
      <guid isPermaLink="false">g3</guid>
      <pubDate>Mon, 05 Jan 2026 11:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""


class RecordingStrategy(SourceStrategy):
    """Strategy double that tracks how many fetches run at once."""

    kind = SourceKind.RSS
    label = "TEST"

    def __init__(self, fail_names: set[str] | None = None) -> None:
        super().__init__(NewsSourceRepository(), FeedItemRepository(), RSS_POLICY, 25)
        self.fail_names = fail_names or set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.fetched: list[str] = []

    async def fetch_and_parse(self, source: NewsSource, now: datetime) -> SourceFetch:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if source.name in self.fail_names:
                raise RuntimeError(f"boom for {source.name}")
            self.fetched.append(source.id)
            return SourceFetch(FetchStatus.OK)
        finally:
            self.in_flight -= 1


def _orchestrator(strategy: SourceStrategy, **overrides: int) -> RunOrchestrator:
    options = {"tick_seconds": 60, "max_sources_per_run": 20, "max_parallel_fetches": 5}
    options.update(overrides)
    return RunOrchestrator(strategy, clock=lambda: NOW, **options)


def _stored_item(source_id: str, external_id: str) -> FeedItem:
    return FeedItem(
        id=f"pre-{external_id}",
        source_id=source_id,
        external_id=external_id,
        kind=FeedItemKind.ARTICLE,
        title="Already here",
        link_url=f"https://news.example.com/{external_id}",
        published_at=NOW - timedelta(days=1),
        imported_at=NOW - timedelta(days=1),
    )


@pytest_asyncio.fixture
async def rss_client() -> AsyncIterator[FetchClient]:
    client = FetchClient(build_http_client(5.0, "test-agent", RSS_ACCEPT))
    yield client
    await client.aclose()


class TestRunOnce:
    """Tests for a single tick."""

    @pytest.mark.asyncio
    async def test_parallelism_bounded(self, make_source: Callable[..., str]) -> None:
        ids = [make_source(fetch_interval_seconds=60) for _ in range(10)]
        strategy = RecordingStrategy()

        summary = await _orchestrator(strategy, max_parallel_fetches=3).run_once()

        assert strategy.max_in_flight == 3
        assert sorted(strategy.fetched) == sorted(ids)
        assert summary.due == 10
        assert summary.count(FetchStatus.OK.value) == 10

    @pytest.mark.asyncio
    async def test_sources_per_run_cap(self, make_source: Callable[..., str]) -> None:
        for _ in range(6):
            make_source()
        strategy = RecordingStrategy()

        summary = await _orchestrator(strategy, max_sources_per_run=4).run_once()

        assert summary.due == 4
        assert len(strategy.fetched) == 4

    @pytest.mark.asyncio
    async def test_nothing_due(self, make_source: Callable[..., str]) -> None:
        source_id = make_source()
        NewsSourceRepository().apply_schedule(
            source_id,
            None,
            ScheduleUpdate(
                last_fetched_at=NOW, next_fetch_at=NOW + timedelta(hours=1), error_count=0
            ),
        )
        strategy = RecordingStrategy()

        summary = await _orchestrator(strategy).run_once()

        assert summary.due == 0
        assert strategy.fetched == []

    @pytest.mark.asyncio
    async def test_failure_isolated(self, make_source: Callable[..., str]) -> None:
        bad = make_source(name="Broken", fetch_interval_seconds=60)
        good = [make_source(fetch_interval_seconds=60) for _ in range(3)]
        strategy = RecordingStrategy(fail_names={"Broken"})

        summary = await _orchestrator(strategy).run_once()

        assert summary.count(FAILED) == 1
        assert summary.count(FetchStatus.OK.value) == 3
        assert sorted(strategy.fetched) == sorted(good)

        repo = NewsSourceRepository()
        broken = repo.get_by_id(bad)
        assert broken is not None
        assert broken.error_count == 1
        assert broken.last_error == "boom for Broken"
        assert broken.next_fetch_at == NOW + timedelta(seconds=120)
        for source_id in good:
            source = repo.get_by_id(source_id)
            assert source is not None
            assert source.error_count == 0
            assert source.next_fetch_at == NOW + timedelta(seconds=60)


class TestRssEndToEnd:
    """RSS sources fetched over HTTP and stored."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_new_items_stored_and_rescheduled(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, content=FEED, headers={"ETag": '"v2"'})
        )
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        items = FeedItemRepository()
        items.insert_many([_stored_item(source_id, "g1")])
        strategy = RssStrategy(NewsSourceRepository(), items, RSS_POLICY, 25, rss_client)

        summary = await _orchestrator(strategy).run_once()

        [result] = summary.results
        assert result.status == FetchStatus.OK.value
        assert result.items_found == 3
        assert result.items_added == 2
        assert {i.external_id for i in items.get_by_source(source_id)} == {"g1", "g2", "g3"}

        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.next_fetch_at == NOW + timedelta(seconds=60)
        assert source.last_fetched_at == NOW
        assert source.error_count == 0
        assert source.last_etag == '"v2"'

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_modified_resets_errors(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(304))
        sources = NewsSourceRepository()
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        sources.apply_schedule(
            source_id,
            None,
            ScheduleUpdate(
                last_fetched_at=NOW - timedelta(hours=1),
                next_fetch_at=NOW - timedelta(minutes=1),
                error_count=2,
                last_error="HTTP 500",
                last_etag='"v1"',
            ),
        )
        items = FeedItemRepository()
        items.insert_many([_stored_item(source_id, "g1")])
        strategy = RssStrategy(sources, items, RSS_POLICY, 25, rss_client)

        summary = await _orchestrator(strategy).run_once()

        assert summary.results[0].status == FetchStatus.NOT_MODIFIED.value
        assert route.calls.last.request.headers["If-None-Match"] == '"v1"'
        source = sources.get_by_id(source_id)
        assert source is not None
        assert source.error_count == 0
        assert source.last_error is None
        assert source.last_etag == '"v1"'
        assert source.next_fetch_at == NOW + timedelta(seconds=60)

    @pytest.mark.asyncio
    @respx.mock
    async def test_validators_skipped_for_empty_catalog(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=FEED))
        sources = NewsSourceRepository()
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        sources.apply_schedule(
            source_id,
            None,
            ScheduleUpdate(
                last_fetched_at=NOW - timedelta(hours=1),
                next_fetch_at=NOW - timedelta(minutes=1),
                error_count=0,
                last_etag='"stale"',
            ),
        )
        strategy = RssStrategy(sources, FeedItemRepository(), RSS_POLICY, 25, rss_client)

        summary = await _orchestrator(strategy).run_once()

        assert "If-None-Match" not in route.calls.last.request.headers
        assert summary.items_added == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_counts_as_failure(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        respx.get(FEED_URL).mock(return_value=httpx.Response(500, text="upstream exploded"))
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        strategy = RssStrategy(
            NewsSourceRepository(), FeedItemRepository(), RSS_POLICY, 25, rss_client
        )

        summary = await _orchestrator(strategy).run_once()

        assert summary.count(FAILED) == 1
        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.error_count == 1
        assert source.last_error is not None
        assert source.last_error.startswith(f"HTTP 500 fetching {FEED_URL}")
        assert "upstream exploded" in source.last_error
        assert source.next_fetch_at == NOW + timedelta(seconds=120)

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_page_counts_as_failure(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        page = b"<!DOCTYPE html><html><head><title>Welcome</title></head><body/></html>"
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=page))
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        strategy = RssStrategy(
            NewsSourceRepository(), FeedItemRepository(), RSS_POLICY, 25, rss_client
        )

        summary = await _orchestrator(strategy).run_once()

        assert summary.count(FAILED) == 1
        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.error_count == 1
        assert source.last_error is not None
        assert source.last_error.startswith("Feed parse error")
        assert source.next_fetch_at == NOW + timedelta(seconds=120)

    @pytest.mark.asyncio
    @respx.mock
    async def test_rss_throttle_is_a_failure(
        self, make_source: Callable[..., str], rss_client: FetchClient
    ) -> None:
        respx.get(FEED_URL).mock(return_value=httpx.Response(503))
        source_id = make_source(rss_url=FEED_URL, fetch_interval_seconds=60)
        strategy = RssStrategy(
            NewsSourceRepository(), FeedItemRepository(), RSS_POLICY, 25, rss_client
        )

        summary = await _orchestrator(strategy).run_once()

        assert summary.count(FetchStatus.THROTTLED.value) == 1
        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.error_count == 1


class TestYouTubeThrottling:
    """YouTube throttling backs off without counting an error."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_throttled_backoff(self, make_source: Callable[..., str]) -> None:
        respx.get(channel_feed_url("UCthrottled")).mock(return_value=httpx.Response(429))
        source_id = make_source(SourceKind.YOUTUBE, youtube_channel_id="UCthrottled")
        client = FetchClient(build_http_client(5.0, "test-agent", YOUTUBE_ACCEPT))
        strategy = YouTubeStrategy(
            NewsSourceRepository(), FeedItemRepository(), youtube_policy(10), 25, client
        )

        summary = await _orchestrator(strategy).run_once()
        await client.aclose()

        assert summary.count(FetchStatus.THROTTLED.value) == 1
        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.error_count == 0
        assert source.last_error == "Throttled by upstream (HTTP 429)"
        assert source.next_fetch_at == NOW + timedelta(minutes=10)


class TestInternalPosts:
    """Verified posts become catalog items."""

    @pytest.mark.asyncio
    async def test_verified_posts_imported(self, make_source: Callable[..., str]) -> None:
        author = UserRepository().create("Amina")
        posts = PostRepository()
        verified = posts.create(PostCreate(user_id=author, title="Clean-up day", is_verified=True))
        posts.create(PostCreate(user_id=author, title="Waiting for review"))
        source_id = make_source(SourceKind.INTERNAL)
        items = FeedItemRepository()
        strategy = InternalPostsStrategy(
            NewsSourceRepository(),
            items,
            internal_policy(120),
            25,
            posts,
            "https://community.example.com",
        )
        orchestrator = _orchestrator(strategy)

        first = await orchestrator.run_once()
        [item] = items.get_by_source(source_id)

        assert first.items_added == 1
        assert item.external_id == f"post-{verified}"
        assert item.author == "Amina"
        assert item.link_url == f"https://community.example.com/{verified}"

        source = NewsSourceRepository().get_by_id(source_id)
        assert source is not None
        assert source.next_fetch_at == NOW + timedelta(minutes=2)


class TestRunForever:
    """Tests for the tick loop."""

    @pytest.mark.asyncio
    async def test_survives_failed_tick_and_reraises_cancel(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        orchestrator = _orchestrator(RecordingStrategy(), tick_seconds=0)
        run_once = AsyncMock(
            side_effect=[RuntimeError("db locked"), None, asyncio.CancelledError()]
        )
        orchestrator.run_once = run_once  # type: ignore[method-assign]

        with caplog.at_level(logging.INFO), pytest.raises(asyncio.CancelledError):
            await orchestrator.run_forever()

        assert run_once.await_count == 3
        assert "TEST: run failed" in caplog.text
        assert "TEST: worker cancelled" in caplog.text

    @pytest.mark.asyncio
    async def test_task_cancellation_stops_loop(self) -> None:
        orchestrator = _orchestrator(RecordingStrategy(), tick_seconds=3600)
        run_once = AsyncMock()
        orchestrator.run_once = run_once  # type: ignore[method-assign]

        task = asyncio.create_task(orchestrator.run_forever())
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert run_once.await_count == 1
