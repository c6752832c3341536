"""Register news sources from the command line.

Usage:
    python -m feedworker.sources feeds <url> [<url> ...]
    python -m feedworker.sources feeds --file feeds.txt
    python -m feedworker.sources channel <channel_id> [name]
    python -m feedworker.sources internal [name]
    python -m feedworker.sources force-due <source_id>

Feed files hold one "URL [name]" entry per line; blank lines and lines
starting with # are ignored.
"""

import logging
import sys
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import urlparse

from pydantic import ValidationError

from feedworker.db.migrate import migrate
from feedworker.db.repository import NewsSourceRepository
from feedworker.models.source import NewsSourceCreate, SourceKind

logger = logging.getLogger(__name__)

DEFAULT_INTERNAL_NAME = "Community posts"


class SourceRegistrationError(ValueError):
    """A source definition is missing what its kind needs to be fetched."""


def validate_source(source: NewsSourceCreate) -> None:
    """Reject sources that could never be fetched."""
    if not source.name.strip():
        raise SourceRegistrationError("Name is required.")
    if source.kind == SourceKind.RSS and not (source.rss_url or "").strip():
        raise SourceRegistrationError("rss_url is required for RSS sources.")
    if source.kind == SourceKind.YOUTUBE and not (source.youtube_channel_id or "").strip():
        raise SourceRegistrationError("youtube_channel_id is required for YouTube sources.")


def register_source(repo: NewsSourceRepository, source: NewsSourceCreate) -> tuple[str, bool]:
    """Create a source unless one with the same location already exists.

    Returns the source id and whether it was newly created. Only one
    internal source is kept.
    """
    validate_source(source)

    if source.kind == SourceKind.INTERNAL:
        existing = repo.get_all(SourceKind.INTERNAL)
        if existing:
            return existing[0].id, False
        source_id = repo.create(source)
        logger.info("Registered internal source %s", source_id)
        return source_id, True

    location = (source.location or "").strip()
    match = repo.find_by_location(source.kind, location)
    if match is not None:
        return match.id, False
    source_id = repo.create(source)
    logger.info("Registered %s source %s location=%s", source.kind.value, source_id, location)
    return source_id, True


def parse_feed_lines(lines: Iterable[str]) -> list[tuple[str, str | None]]:
    """Read "URL [name]" entries, skipping blanks and comments."""
    entries: list[tuple[str, str | None]] = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(maxsplit=1)
        entries.append((parts[0], parts[1].strip() if len(parts) > 1 else None))
    return entries


def load_feeds(
    entries: list[tuple[str, str | None]],
    repo: NewsSourceRepository | None = None,
) -> tuple[int, int]:
    """Register RSS feeds in bulk and return (loaded, skipped)."""
    repo = repo or NewsSourceRepository()
    loaded = 0
    skipped = 0

    for url, name in entries:
        parsed = urlparse(url)
        homepage = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else None
        source = NewsSourceCreate(
            name=(name or parsed.netloc or url)[:200],
            kind=SourceKind.RSS,
            rss_url=url,
            website_url=homepage,
        )
        source_id, created = register_source(repo, source)
        if created:
            print(f"Added feed {source_id}: {url}" + (f" ({name})" if name else ""))
            loaded += 1
        else:
            print(f"Skipping (already exists): {url}")
            skipped += 1

    return loaded, skipped


def add_channel(
    channel_id: str,
    name: str | None = None,
    repo: NewsSourceRepository | None = None,
) -> tuple[str, bool]:
    """Register a YouTube channel by its UC... id."""
    repo = repo or NewsSourceRepository()
    source = NewsSourceCreate(
        name=name or channel_id,
        kind=SourceKind.YOUTUBE,
        youtube_channel_id=channel_id.strip(),
        website_url=f"https://www.youtube.com/channel/{channel_id.strip()}",
    )
    return register_source(repo, source)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    migrate()
    repo = NewsSourceRepository()

    try:
        match args:
            case ["feeds", "--file" | "-f", path]:
                entries = parse_feed_lines(Path(path).read_text(encoding="utf-8").splitlines())
            case ["feeds", *urls] if urls:
                entries = [(url, None) for url in urls]
            case ["channel", channel_id, *rest]:
                source_id, created = add_channel(channel_id, " ".join(rest) or None, repo)
                state = "Added" if created else "Already registered"
                print(f"{state} channel {source_id}: {channel_id}")
                return 0
            case ["internal", *rest]:
                source = NewsSourceCreate(
                    name=" ".join(rest) or DEFAULT_INTERNAL_NAME, kind=SourceKind.INTERNAL
                )
                source_id, created = register_source(repo, source)
                state = "Added" if created else "Already registered"
                print(f"{state} internal source {source_id}")
                return 0
            case ["force-due", source_id]:
                if not repo.force_due(source_id):
                    print(f"Source not found: {source_id}")
                    return 1
                print(f"Source {source_id} will be fetched on the next tick")
                return 0
            case _:
                print(__doc__)
                return 2
    except (SourceRegistrationError, ValidationError) as e:
        print(f"Invalid source: {e}")
        return 1

    if not entries:
        print("No feeds to load")
        return 1

    try:
        loaded, skipped = load_feeds(entries, repo)
    except (SourceRegistrationError, ValidationError) as e:
        print(f"Invalid source: {e}")
        return 1
    print(f"\nLoaded {loaded} feeds, skipped {skipped} duplicates")
    return 0


if __name__ == "__main__":
    sys.exit(main())
