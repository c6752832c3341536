"""Next-fetch computation with capped backoff and jitter.

Scheduling state lives entirely in the source's own fields; each function
here maps (source, outcome, now) to the ScheduleUpdate to write back.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from feedworker.ingestion.normalize import truncate
from feedworker.models.source import NewsSource, ScheduleUpdate

MAX_ERROR_LENGTH = 800
MIN_SOURCE_INTERVAL_SECONDS = 5


@dataclass(frozen=True)
class BackoffPolicy:
    """Per-kind scheduling rules.

    throttle_backoff_seconds of None means throttling is handled as a hard
    failure. fixed_interval_seconds overrides the source's own interval.
    """

    failure_cap_seconds: int
    min_interval_seconds: int = MIN_SOURCE_INTERVAL_SECONDS
    jitter_seconds: float = 0.0
    throttle_backoff_seconds: int | None = None
    fixed_interval_seconds: int | None = None


RSS_POLICY = BackoffPolicy(failure_cap_seconds=15 * 60)


def youtube_policy(throttle_backoff_minutes: int) -> BackoffPolicy:
    return BackoffPolicy(
        failure_cap_seconds=30 * 60,
        jitter_seconds=10.0,
        throttle_backoff_seconds=max(1, throttle_backoff_minutes) * 60,
    )


def internal_policy(reschedule_seconds: int) -> BackoffPolicy:
    return BackoffPolicy(
        failure_cap_seconds=15 * 60,
        fixed_interval_seconds=max(MIN_SOURCE_INTERVAL_SECONDS, reschedule_seconds),
    )


def resolve_interval_seconds(source: NewsSource, policy: BackoffPolicy) -> int:
    """Source poll interval: seconds when set, else legacy minutes, floored."""
    if policy.fixed_interval_seconds is not None:
        return policy.fixed_interval_seconds
    if source.fetch_interval_seconds > 0:
        interval = source.fetch_interval_seconds
    else:
        interval = source.fetch_interval_minutes * 60
    return max(policy.min_interval_seconds, interval)


def schedule_success(
    source: NewsSource,
    policy: BackoffPolicy,
    now: datetime,
    etag: str | None = None,
    last_modified: str | None = None,
    rng: random.Random | None = None,
) -> ScheduleUpdate:
    """Clean cycle (including 304): reset errors and wait one interval."""
    delay = float(resolve_interval_seconds(source, policy))
    if policy.jitter_seconds > 0:
        delay += (rng or random).uniform(0.0, policy.jitter_seconds)

    return ScheduleUpdate(
        last_fetched_at=now,
        next_fetch_at=now + timedelta(seconds=delay),
        error_count=0,
        last_error=None,
        last_etag=etag,
        last_modified=last_modified,
    )


def failure_delay_seconds(interval_seconds: int, error_count: int, cap_seconds: int) -> int:
    """Grow the delay with the error count, never beyond the cap."""
    return min(interval_seconds * max(2, error_count), cap_seconds)


def schedule_failure(
    source: NewsSource,
    policy: BackoffPolicy,
    now: datetime,
    message: str,
) -> ScheduleUpdate:
    """Hard failure: count it and back off."""
    error_count = source.error_count + 1
    delay = failure_delay_seconds(
        resolve_interval_seconds(source, policy), error_count, policy.failure_cap_seconds
    )
    return ScheduleUpdate(
        last_fetched_at=now,
        next_fetch_at=now + timedelta(seconds=delay),
        error_count=error_count,
        last_error=truncate(message, MAX_ERROR_LENGTH),
        last_etag=source.last_etag,
        last_modified=source.last_modified,
    )


def schedule_throttled(
    source: NewsSource,
    policy: BackoffPolicy,
    now: datetime,
    message: str,
) -> ScheduleUpdate:
    """Soft failure: flat delay and the error count stays where it was."""
    if policy.throttle_backoff_seconds is None:
        return schedule_failure(source, policy, now, message)

    return ScheduleUpdate(
        last_fetched_at=now,
        next_fetch_at=now + timedelta(seconds=policy.throttle_backoff_seconds),
        error_count=source.error_count,
        last_error=truncate(message, MAX_ERROR_LENGTH),
        last_etag=source.last_etag,
        last_modified=source.last_modified,
    )
