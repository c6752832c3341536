"""Conditional HTTP fetching shared by the network-backed source kinds.

Provides:
- FetchOutcome variants: NotModified, Throttled, HttpError, Success
- MinIntervalRateLimiter: process-wide spacing between requests to one upstream
- FetchClient: one conditional GET per processing unit

The client never touches source state; callers decide what each outcome
means for scheduling.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

# Upstream signals that mean "slow down" rather than "broken"
THROTTLE_STATUS_CODES = frozenset({429, 502, 503})

# How much of an error body is kept for diagnostics
BODY_EXCERPT_LENGTH = 500

RSS_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
)
YOUTUBE_ACCEPT = "application/atom+xml, application/xml;q=0.9, */*;q=0.5"


@dataclass(frozen=True)
class NotModified:
    """HTTP 304: the cached copy is still current."""


@dataclass(frozen=True)
class Throttled:
    """Upstream asked us to back off (429/502/503)."""

    status_code: int
    retry_after: str | None = None


@dataclass(frozen=True)
class HttpError:
    """Any other non-success status."""

    status_code: int
    body_excerpt: str = ""


@dataclass(frozen=True)
class Success:
    """2xx response with its body and any new cache validators."""

    content: bytes
    etag: str | None = None
    last_modified: str | None = None


FetchOutcome = NotModified | Throttled | HttpError | Success


class MinIntervalRateLimiter:
    """Enforce a minimum delay between consecutive requests.

    One instance is shared by every caller that talks to the same upstream.
    Only request start times are serialized; the requests themselves still
    run concurrently.

    Example:
        limiter = MinIntervalRateLimiter(0.5)
        await limiter.acquire()  # returns once 0.5s have passed since the last caller
    """

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request_at: float | None = None

    async def acquire(self) -> None:
        """Wait until a request may start, then record its start time."""
        async with self._lock:
            now = self._clock()
            if self._last_request_at is not None:
                wait = self._last_request_at + self.min_interval_seconds - now
                if wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
            self._last_request_at = now


def build_http_client(timeout: float, user_agent: str, accept: str) -> httpx.AsyncClient:
    """Create an AsyncClient with kind-specific timeout and headers.

    httpx negotiates gzip/deflate and decompresses transparently.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": user_agent, "Accept": accept},
        follow_redirects=True,
    )


class FetchClient:
    """Issue conditional GETs and classify the response."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        rate_limiter: MinIntervalRateLimiter | None = None,
    ) -> None:
        self._client = client
        self._rate_limiter = rate_limiter

    async def fetch(
        self,
        url: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FetchOutcome:
        """Fetch a URL, sending cache validators when we have them.

        Network errors and timeouts propagate as httpx exceptions.
        """
        headers: dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        response = await self._client.get(url, headers=headers)
        status = response.status_code

        if status == 304:
            return NotModified()

        if status in THROTTLE_STATUS_CODES:
            logger.info("Throttled by upstream: %s (HTTP %d)", url, status)
            return Throttled(status_code=status, retry_after=response.headers.get("Retry-After"))

        if not response.is_success:
            return HttpError(status_code=status, body_excerpt=response.text[:BODY_EXCERPT_LENGTH])

        return Success(
            content=response.content,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
