"""YouTube channel feed parsing.

Uses the public Atom + media-RSS channel feed, which needs no API key and
has no quota.
"""

import logging
from datetime import datetime
from typing import Any, cast
from urllib.parse import quote

import feedparser

from feedworker.ingestion.errors import FeedParseError
from feedworker.ingestion.normalize import clean_text, http_url, struct_time_to_utc, truncate
from feedworker.models.feed_item import (
    MAX_AUTHOR_LENGTH,
    MAX_EMBED_URL_LENGTH,
    MAX_EXTERNAL_ID_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    FeedItemCandidate,
    FeedItemKind,
)

logger = logging.getLogger(__name__)

CHANNEL_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
EMBED_URL = "https://www.youtube.com/embed/{video_id}"

_ENTRY_ID_PREFIX = "yt:video:"


def channel_feed_url(channel_id: str) -> str:
    """Build the public feed URL for a channel id."""
    return CHANNEL_FEED_URL.format(channel_id=quote(channel_id.strip(), safe=""))


def embed_url(video_id: str) -> str:
    """Derive the embeddable player URL for a video."""
    return EMBED_URL.format(video_id=video_id)


def _video_id(entry: Any) -> str | None:
    video_id = clean_text(entry.get("yt_videoid"))
    if video_id:
        return video_id
    entry_id = clean_text(entry.get("id"))
    if entry_id and entry_id.startswith(_ENTRY_ID_PREFIX):
        return clean_text(entry_id[len(_ENTRY_ID_PREFIX) :])
    return None


def _thumbnail_url(entry: Any) -> str | None:
    for thumb in entry.get("media_thumbnail") or []:
        url = clean_text(thumb.get("url"))
        if url:
            return url
    return None


def _author(entry: Any) -> str | None:
    author = clean_text(entry.get("author"))
    if not author and entry.get("author_detail"):
        author = clean_text(entry.get("author_detail").get("name"))
    return author


def _to_candidate(source_id: str, entry: Any, now: datetime) -> FeedItemCandidate | None:
    video_id = _video_id(entry)
    title = clean_text(entry.get("title"))
    if not video_id or not title:
        return None

    # Without a <link>, feedparser reports the yt:video: id as the link
    link = http_url(entry.get("link")) or WATCH_URL.format(video_id=video_id)
    published = (
        struct_time_to_utc(entry.get("published_parsed"))
        or struct_time_to_utc(entry.get("updated_parsed"))
        or now
    )

    return FeedItemCandidate(
        source_id=source_id,
        external_id=truncate(video_id, MAX_EXTERNAL_ID_LENGTH) or video_id,
        kind=FeedItemKind.VIDEO,
        title=truncate(title, MAX_TITLE_LENGTH) or title,
        summary=truncate(clean_text(entry.get("summary")), MAX_SUMMARY_LENGTH),
        link_url=truncate(link, MAX_URL_LENGTH) or link,
        image_url=truncate(_thumbnail_url(entry), MAX_URL_LENGTH),
        author=truncate(_author(entry), MAX_AUTHOR_LENGTH),
        published_at=published,
        youtube_video_id=video_id,
        embed_url=truncate(embed_url(video_id), MAX_EMBED_URL_LENGTH),
    )


def parse_youtube(
    source_id: str,
    payload: bytes | str,
    max_items: int,
    now: datetime,
) -> list[FeedItemCandidate]:
    """Parse a channel feed into video candidates, newest first.

    The video id is the external id; entries without one (or without a
    title) are skipped.
    """
    feed = cast("Any", feedparser).parse(payload)
    if not feed.entries and (feed.bozo or not feed.version):
        raise FeedParseError(
            "YouTube feed parse error: "
            f"{feed.get('bozo_exception') or 'not an Atom document'}"
        )

    candidates: list[FeedItemCandidate] = []
    skipped = 0
    for entry in list(feed.entries):
        candidate = _to_candidate(source_id, entry, now)
        if candidate is None:
            skipped += 1
            continue
        candidates.append(candidate)

    if skipped:
        logger.debug("Skipped %d YouTube entries without video id or title", skipped)

    candidates.sort(key=lambda c: c.published_at, reverse=True)
    return candidates[: max(1, max_items)]
