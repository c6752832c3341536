"""Text and date normalization shared by the feed parsers."""

import re
import time
from datetime import UTC, datetime
from typing import Any

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def truncate(value: str | None, max_length: int) -> str | None:
    """Cut a string to max_length characters, leaving shorter values untouched."""
    if not value:
        return value
    return value if len(value) <= max_length else value[:max_length]


def clean_text(value: str | None) -> str | None:
    """Trim a string, returning None when nothing is left."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def strip_html(html: str | None) -> str | None:
    """Drop markup and collapse whitespace."""
    if not html:
        return None
    no_tags = _TAG_RE.sub(" ", html)
    return clean_text(_WHITESPACE_RE.sub(" ", no_tags))


def struct_time_to_utc(value: Any) -> datetime | None:
    """Convert a feedparser time tuple (always UTC) to an aware datetime."""
    if not value:
        return None
    try:
        if isinstance(value, time.struct_time):
            value = tuple(value)
        return datetime(*value[:6], tzinfo=UTC)
    except (ValueError, TypeError, IndexError):
        return None


def http_url(value: str | None) -> str | None:
    """Return the trimmed value only when it is an absolute http(s) URL."""
    url = clean_text(value)
    if url is None or not url.lower().startswith(("http://", "https://")):
        return None
    return url
