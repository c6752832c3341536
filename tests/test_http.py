"""Tests for conditional fetching and rate limiting."""

import asyncio

import httpx
import pytest
import respx

from feedworker.ingestion.http import (
    BODY_EXCERPT_LENGTH,
    RSS_ACCEPT,
    FetchClient,
    HttpError,
    MinIntervalRateLimiter,
    NotModified,
    Success,
    Throttled,
    build_http_client,
)

FEED_URL = "https://news.example.com/feed.xml"


def _client(rate_limiter: MinIntervalRateLimiter | None = None) -> FetchClient:
    return FetchClient(build_http_client(5.0, "test-agent", RSS_ACCEPT), rate_limiter)


class TestFetchClient:
    """Tests for FetchClient.fetch response classification."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_returns_body_and_validators(self) -> None:
        route = respx.get(FEED_URL).mock(
            return_value=httpx.Response(
                200,
                content=b"<rss/>",
                headers={"ETag": '"abc"', "Last-Modified": "Mon, 05 Jan 2026 10:00:00 GMT"},
            )
        )
        client = _client()
        outcome = await client.fetch(FEED_URL)
        await client.aclose()

        assert outcome == Success(
            content=b"<rss/>", etag='"abc"', last_modified="Mon, 05 Jan 2026 10:00:00 GMT"
        )
        request = route.calls.last.request
        assert request.headers["User-Agent"] == "test-agent"
        assert "If-None-Match" not in request.headers
        assert "If-Modified-Since" not in request.headers

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_conditional_headers(self) -> None:
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(304))
        client = _client()
        outcome = await client.fetch(FEED_URL, etag='"abc"', last_modified="Sun")
        await client.aclose()

        assert isinstance(outcome, NotModified)
        request = route.calls.last.request
        assert request.headers["If-None-Match"] == '"abc"'
        assert request.headers["If-Modified-Since"] == "Sun"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 502, 503])
    @respx.mock
    async def test_throttle_statuses(self, status: int) -> None:
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(status, headers={"Retry-After": "120"})
        )
        client = _client()
        outcome = await client.fetch(FEED_URL)
        await client.aclose()

        assert outcome == Throttled(status_code=status, retry_after="120")

    @pytest.mark.asyncio
    @respx.mock
    async def test_other_errors_keep_body_excerpt(self) -> None:
        respx.get(FEED_URL).mock(return_value=httpx.Response(500, text="x" * 2000))
        client = _client()
        outcome = await client.fetch(FEED_URL)
        await client.aclose()

        assert isinstance(outcome, HttpError)
        assert outcome.status_code == 500
        assert len(outcome.body_excerpt) == BODY_EXCERPT_LENGTH

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_propagates(self) -> None:
        respx.get(FEED_URL).mock(side_effect=httpx.ConnectError("refused"))
        client = _client()
        with pytest.raises(httpx.ConnectError):
            await client.fetch(FEED_URL)
        await client.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limiter_consulted(self) -> None:
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=b""))
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        limiter = MinIntervalRateLimiter(0.5, clock=lambda: 100.0, sleep=fake_sleep)
        client = _client(limiter)
        await client.fetch(FEED_URL)
        await client.fetch(FEED_URL)
        await client.aclose()

        assert sleeps == [0.5]


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.starts: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class TestMinIntervalRateLimiter:
    """Tests for MinIntervalRateLimiter."""

    @pytest.mark.asyncio
    async def test_first_acquire_does_not_wait(self) -> None:
        clock = FakeClock()
        limiter = MinIntervalRateLimiter(0.5, clock=clock, sleep=clock.sleep)
        await limiter.acquire()
        assert clock.now == 0.0

    @pytest.mark.asyncio
    async def test_concurrent_starts_are_spaced(self) -> None:
        clock = FakeClock()
        limiter = MinIntervalRateLimiter(0.5, clock=clock, sleep=clock.sleep)

        async def request() -> None:
            await limiter.acquire()
            clock.starts.append(clock.now)

        await asyncio.gather(*(request() for _ in range(5)))

        gaps = [b - a for a, b in zip(clock.starts, clock.starts[1:], strict=False)]
        assert len(clock.starts) == 5
        assert all(gap >= 0.5 for gap in gaps)

    @pytest.mark.asyncio
    async def test_no_wait_after_interval_elapsed(self) -> None:
        clock = FakeClock()
        slept: list[float] = []

        async def sleep(seconds: float) -> None:
            slept.append(seconds)

        limiter = MinIntervalRateLimiter(0.5, clock=clock, sleep=sleep)
        await limiter.acquire()
        clock.now = 10.0
        await limiter.acquire()

        assert slept == []

    def test_negative_interval_clamped(self) -> None:
        assert MinIntervalRateLimiter(-1).min_interval_seconds == 0.0
