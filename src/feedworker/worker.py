"""Background ingestion worker.

Runs one periodic ingestion task per source kind plus a heartbeat until the
process receives SIGINT or SIGTERM.

Usage:
    python -m feedworker.worker [run]
    python -m feedworker.worker once <rss|youtube|internal>
"""

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from feedworker.config import Settings, get_settings
from feedworker.db.migrate import migrate
from feedworker.db.repository import FeedItemRepository, NewsSourceRepository, PostRepository
from feedworker.ingestion.http import (
    RSS_ACCEPT,
    YOUTUBE_ACCEPT,
    FetchClient,
    MinIntervalRateLimiter,
    build_http_client,
)
from feedworker.ingestion.orchestrator import FAILED, RunOrchestrator, RunSummary
from feedworker.ingestion.scheduler import RSS_POLICY, internal_policy, youtube_policy
from feedworker.ingestion.strategies import InternalPostsStrategy, RssStrategy, YouTubeStrategy
from feedworker.models.source import SourceKind

logger = logging.getLogger(__name__)

# Global set to track background tasks (prevent garbage collection)
background_tasks: set[asyncio.Task[None]] = set()


@dataclass
class WorkerComponents:
    """Orchestrators and the HTTP clients they own."""

    orchestrators: dict[SourceKind, RunOrchestrator]
    clients: list[FetchClient] = field(default_factory=list)

    async def aclose(self) -> None:
        for client in self.clients:
            await client.aclose()


def build_components(settings: Settings) -> WorkerComponents:
    """Wire repositories, HTTP clients and strategies for every source kind."""
    sources = NewsSourceRepository()
    items = FeedItemRepository()

    rss_client = FetchClient(
        build_http_client(settings.rss_timeout, settings.rss_user_agent, RSS_ACCEPT)
    )
    # Every YouTube request in the process shares this limiter
    youtube_client = FetchClient(
        build_http_client(settings.youtube_timeout, settings.youtube_user_agent, YOUTUBE_ACCEPT),
        rate_limiter=MinIntervalRateLimiter(settings.youtube_min_delay),
    )

    rss = RssStrategy(sources, items, RSS_POLICY, settings.items_per_source, rss_client)
    youtube = YouTubeStrategy(
        sources,
        items,
        youtube_policy(settings.youtube_throttle_backoff_minutes),
        settings.items_per_source,
        youtube_client,
    )
    internal = InternalPostsStrategy(
        sources,
        items,
        internal_policy(settings.internal_reschedule_seconds),
        settings.items_per_source,
        PostRepository(),
        settings.internal_post_base_url,
    )

    ticks = {
        SourceKind.RSS: settings.rss_tick_interval,
        SourceKind.YOUTUBE: settings.youtube_tick_interval,
        SourceKind.INTERNAL: settings.internal_tick_interval,
    }
    orchestrators = {
        strategy.kind: RunOrchestrator(
            strategy,
            tick_seconds=ticks[strategy.kind],
            max_sources_per_run=settings.sources_per_run,
            max_parallel_fetches=settings.parallel_fetches,
        )
        for strategy in (rss, youtube, internal)
    }
    return WorkerComponents(orchestrators=orchestrators, clients=[rss_client, youtube_client])


async def heartbeat(interval_seconds: float) -> None:
    """Log liveness at a fixed interval."""
    logger.info("Heartbeat started @ %s", datetime.now(UTC).isoformat())
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            logger.info("Heartbeat alive @ %s", datetime.now(UTC).isoformat())
    except asyncio.CancelledError:
        logger.info("Heartbeat stopped")
        raise


def _start_task(coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
    task = asyncio.create_task(coro, name=name)
    background_tasks.add(task)
    task.add_done_callback(background_tasks.discard)
    return task


async def run_worker(
    settings: Settings | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run all ingestion loops until a stop signal arrives."""
    settings = settings or get_settings()
    migrate()

    logger.info(
        "Worker starting: rss_tick=%ss youtube_tick=%ss internal_tick=%ss "
        "max_sources_per_run=%d max_items_per_source=%d max_parallel_fetches=%d",
        settings.rss_tick_interval,
        settings.youtube_tick_interval,
        settings.internal_tick_interval,
        settings.sources_per_run,
        settings.items_per_source,
        settings.parallel_fetches,
    )

    components = build_components(settings)
    stop = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform or outside the main thread
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)

    tasks = [_start_task(heartbeat(settings.heartbeat_seconds), "heartbeat")]
    for kind, orchestrator in components.orchestrators.items():
        tasks.append(_start_task(orchestrator.run_forever(), f"ingest-{kind.value}"))

    try:
        await stop.wait()
    finally:
        logger.info("Stopping background ingestion workers")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await components.aclose()
        for sig in installed:
            loop.remove_signal_handler(sig)
        logger.info("All background workers stopped")


async def run_single(kind: SourceKind, settings: Settings | None = None) -> RunSummary:
    """Run one tick for a single source kind."""
    settings = settings or get_settings()
    migrate()
    components = build_components(settings)
    try:
        return await components.orchestrators[kind].run_once()
    finally:
        await components.aclose()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    match args:
        case [] | ["run"]:
            asyncio.run(run_worker(settings))
            return 0
        case ["once", kind_name]:
            try:
                kind = SourceKind(kind_name)
            except ValueError:
                print(f"Unknown source kind: {kind_name}")
                return 2
            summary = asyncio.run(run_single(kind, settings))

            print(f"\n{kind.value} ingestion summary (run {summary.run_id}):")
            print(f"  Sources processed: {summary.due}")
            print(f"  New items: {summary.items_added}")
            print(f"  Failures: {summary.count(FAILED)}")
            for result in summary.results:
                if result.error:
                    print(f"  [{result.source_name}] {result.error}")
            return 0 if summary.count(FAILED) == 0 else 1
        case _:
            print(__doc__)
            return 2


if __name__ == "__main__":
    sys.exit(main())
