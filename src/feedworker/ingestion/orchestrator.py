"""Periodic ingestion runs for one source kind.

Each tick selects the due sources of the kind, processes them under a
bounded concurrency gate, waits for all of them, and logs a summary.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from feedworker.ingestion.dedupe import select_new_items
from feedworker.ingestion.strategies import FetchStatus, SourceFetch, SourceStrategy
from feedworker.models.feed_item import FeedItem
from feedworker.models.source import NewsSource

logger = logging.getLogger(__name__)

FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SourceResult:
    """Outcome of processing a single source."""

    source_id: str
    source_name: str
    status: str
    items_found: int = 0
    items_added: int = 0
    error: str | None = None


@dataclass
class RunSummary:
    """Aggregate outcome of one tick."""

    run_id: str
    kind: str
    results: list[SourceResult] = field(default_factory=list)

    @property
    def due(self) -> int:
        return len(self.results)

    @property
    def items_added(self) -> int:
        return sum(r.items_added for r in self.results)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)


class RunOrchestrator:
    """Drive the tick loop for one source kind."""

    def __init__(
        self,
        strategy: SourceStrategy,
        tick_seconds: float,
        max_sources_per_run: int,
        max_parallel_fetches: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.strategy = strategy
        self.tick_seconds = tick_seconds
        self.max_sources_per_run = max(1, max_sources_per_run)
        self.max_parallel_fetches = max(1, max_parallel_fetches)
        self._clock = clock

    @property
    def label(self) -> str:
        return self.strategy.label

    async def run_once(self) -> RunSummary:
        """Run a single tick and return its summary."""
        run_id = uuid.uuid4().hex[:8]
        summary = RunSummary(run_id=run_id, kind=self.strategy.kind.value)
        now = self._clock()

        due = self.strategy.select_due(now, self.max_sources_per_run)
        logger.info(
            "%s[%s]: active=%d due=%d max_per_run=%d",
            self.label,
            run_id,
            self.strategy.sources.count_active(self.strategy.kind),
            len(due),
            self.max_sources_per_run,
        )
        if not due:
            return summary

        gate = asyncio.Semaphore(self.max_parallel_fetches)

        async def unit(source: NewsSource) -> SourceResult:
            async with gate:
                try:
                    return await self.process_source(source, run_id)
                except Exception as e:
                    # Only reached if persisting the outcome itself failed
                    logger.error(
                        "%s[%s]: unit failed source=%s",
                        self.label,
                        run_id,
                        source.name,
                        exc_info=True,
                    )
                    return SourceResult(source.id, source.name, FAILED, error=str(e))

        summary.results = list(await asyncio.gather(*(unit(s) for s in due)))

        logger.info(
            "%s[%s]: done due=%d ok=%d not_modified=%d throttled=%d failed=%d added=%d",
            self.label,
            run_id,
            summary.due,
            summary.count(FetchStatus.OK.value),
            summary.count(FetchStatus.NOT_MODIFIED.value),
            summary.count(FetchStatus.THROTTLED.value),
            summary.count(FAILED),
            summary.items_added,
        )
        return summary

    async def process_source(self, source: NewsSource, run_id: str) -> SourceResult:
        """Fetch, parse, dedupe and reschedule one source.

        Fetch and parse failures are recorded on the source and never raised.
        New items and the schedule are written in one commit.
        """
        result = SourceResult(source.id, source.name, FAILED)
        fetch: SourceFetch | None = None
        new_items: list[FeedItem] = []
        try:
            fetch = await self.strategy.fetch_and_parse(source, self._clock())
            result.status = fetch.status.value
            result.items_found = len(fetch.candidates)
            if fetch.status == FetchStatus.OK:
                new_items = select_new_items(
                    self.strategy.items, source.id, fetch.candidates, self._clock()
                )
        except Exception as e:
            fetch = None
            result.status = FAILED
            result.error = str(e) or type(e).__name__
            logger.warning(
                "%s[%s]: source failed source=%s error=%s",
                self.label,
                run_id,
                source.name,
                result.error,
                exc_info=True,
            )

        update = self.strategy.compute_schedule(source, fetch, self._clock(), error=result.error)
        result.items_added, applied = self.strategy.sources.record_fetch(
            source.id, source.next_fetch_at, update, new_items
        )
        if not applied:
            logger.warning(
                "%s[%s]: schedule changed concurrently, update skipped source=%s",
                self.label,
                run_id,
                source.name,
            )

        logger.info(
            "%s[%s]: source=%s status=%s found=%d added=%d next=%s errors=%d",
            self.label,
            run_id,
            source.name,
            result.status,
            result.items_found,
            result.items_added,
            update.next_fetch_at.isoformat(),
            update.error_count,
        )
        return result

    async def run_forever(self) -> None:
        """Run ticks until cancelled.

        The first tick starts immediately. Each following tick starts one
        interval after the previous one started, or right away if that run
        overran; ticks of the same kind never overlap.
        """
        loop = asyncio.get_running_loop()
        logger.info("%s: worker started tick=%ss", self.label, self.tick_seconds)
        try:
            while True:
                started = loop.time()
                try:
                    await self.run_once()
                except Exception:
                    logger.error("%s: run failed", self.label, exc_info=True)

                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, self.tick_seconds - elapsed))
        except asyncio.CancelledError:
            logger.warning("%s: worker cancelled", self.label)
            raise
