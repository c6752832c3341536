"""RSS/Atom feed parsing into canonical feed items."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast

import feedparser

from feedworker.ingestion.errors import FeedParseError
from feedworker.ingestion.normalize import (
    clean_text,
    http_url,
    strip_html,
    struct_time_to_utc,
    truncate,
)
from feedworker.models.feed_item import (
    MAX_AUTHOR_LENGTH,
    MAX_EXTERNAL_ID_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    FeedItemCandidate,
    FeedItemKind,
)

logger = logging.getLogger(__name__)

_IMG_SRC_RE = re.compile(r"src\s*=\s*\"(?P<url>https?://[^\"]+)\"", re.IGNORECASE)


@dataclass
class RSSEntry:
    """Parsed RSS/Atom entry before normalization."""

    guid: str | None
    link: str | None
    title: str | None
    summary_html: str | None
    author: str | None
    image_url: str | None
    published: datetime | None
    published_raw: str | None


def _first_url(media: Any, key: str = "url") -> str | None:
    """Return the first non-empty url from a feedparser media list."""
    if not media:
        return None
    for item in media:
        url = clean_text(str(item.get(key) or ""))
        if url:
            return url
    return None


def _extract_image_url(entry: Any, summary_html: str | None) -> str | None:
    """Find an image for the entry: enclosure, media tags, then inline <img>."""
    enclosure = _first_url(entry.get("enclosures"), key="href")
    if enclosure:
        return enclosure

    media = _first_url(entry.get("media_thumbnail")) or _first_url(entry.get("media_content"))
    if media:
        return media

    if summary_html:
        match = _IMG_SRC_RE.search(summary_html)
        if match:
            return match.group("url")
    return None


def _parse_entry(entry: Any) -> RSSEntry:
    """Parse a feedparser entry into our intermediate model.

    Uses Any type because feedparser doesn't have type stubs and
    FeedParserDict is effectively untyped.
    """
    summary_html: str | None = None
    if entry.get("summary"):
        summary_html = str(entry.get("summary"))
    elif entry.get("content"):
        content_list: list[dict[str, Any]] = entry.get("content")
        summary_html = str(content_list[0].get("value", ""))

    author = entry.get("author")
    if not author and entry.get("author_detail"):
        author = entry.get("author_detail").get("name")

    published = struct_time_to_utc(entry.get("published_parsed"))
    published_raw = entry.get("published")
    if published is None:
        published = struct_time_to_utc(entry.get("updated_parsed"))
        published_raw = entry.get("updated")

    return RSSEntry(
        guid=clean_text(entry.get("id")),
        # feedparser copies a permalink guid or Atom id into link; keep real URLs only
        link=http_url(entry.get("link")),
        title=clean_text(entry.get("title")),
        summary_html=summary_html,
        author=clean_text(author),
        image_url=_extract_image_url(entry, summary_html),
        published=published,
        published_raw=clean_text(published_raw) if published is not None else None,
    )


def _to_candidate(
    source_id: str,
    entry: RSSEntry,
    feed_link: str | None,
    now: datetime,
) -> FeedItemCandidate | None:
    """Normalize one entry, or return None when it cannot be stored."""
    if not entry.title:
        return None

    link = entry.link or http_url(entry.guid) or feed_link
    if not link:
        return None

    published = entry.published or now
    external_id = (
        entry.guid or entry.link or f"{source_id}:{entry.title}:{entry.published_raw or ''}"
    )

    return FeedItemCandidate(
        source_id=source_id,
        external_id=truncate(external_id, MAX_EXTERNAL_ID_LENGTH) or external_id,
        kind=FeedItemKind.ARTICLE,
        title=truncate(entry.title, MAX_TITLE_LENGTH) or entry.title,
        summary=truncate(strip_html(entry.summary_html), MAX_SUMMARY_LENGTH),
        link_url=truncate(link, MAX_URL_LENGTH) or link,
        image_url=truncate(entry.image_url, MAX_URL_LENGTH),
        author=truncate(entry.author, MAX_AUTHOR_LENGTH),
        published_at=published,
    )


def parse_rss(
    source_id: str,
    payload: bytes | str,
    max_items: int,
    now: datetime,
) -> list[FeedItemCandidate]:
    """Parse an RSS or Atom document into candidate items.

    External ids prefer the entry guid, then its link, then a synthesized
    "source:title:date" key. Results are newest first and capped at
    max_items so dedupe work per run stays bounded.
    """
    feed = cast("Any", feedparser).parse(payload)
    # HTML error pages parse leniently into a title with no entries and no version
    if not feed.entries and (feed.bozo or not feed.version):
        raise FeedParseError(
            f"Feed parse error: {feed.get('bozo_exception') or 'not an RSS or Atom document'}"
        )
    if feed.bozo:
        logger.debug("Feed parsed with warnings: %s", feed.bozo_exception)

    feed_link = http_url(feed.feed.get("link")) if feed.feed else None

    candidates: list[FeedItemCandidate] = []
    for raw_entry in list(feed.entries):
        candidate = _to_candidate(source_id, _parse_entry(raw_entry), feed_link, now)
        if candidate is not None:
            candidates.append(candidate)

    candidates.sort(key=lambda c: c.published_at, reverse=True)
    return candidates[: max(1, max_items)]
