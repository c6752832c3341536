"""Repository for catalog database operations."""

import sqlite3
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from feedworker.db.connection import get_connection
from feedworker.models.feed_item import FeedItem, FeedItemKind
from feedworker.models.post import Post, PostCreate
from feedworker.models.source import NewsSource, NewsSourceCreate, ScheduleUpdate, SourceKind

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds
_IN_CHUNK_SIZE = 500

# Never-fetched sources sort as if due at the epoch
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Column that must be set for a source of each kind to be fetchable
_LOCATION_COLUMNS = {
    SourceKind.RSS: "rss_url",
    SourceKind.YOUTUBE: "youtube_channel_id",
}


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as UTC ISO-8601 with fixed precision.

    Fixed precision keeps lexical order identical to chronological order,
    which the due-time comparisons in SQL rely on.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp, always returning an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _new_id() -> str:
    return uuid.uuid4().hex


def _insert_items(conn: sqlite3.Connection, items: list[FeedItem]) -> int:
    """Insert items on an open connection, ignoring unique-index collisions."""
    if not items:
        return 0
    cursor = conn.executemany(
        """
        INSERT OR IGNORE INTO feed_items (
            id, source_id, external_id, kind, title, summary, link_url, image_url,
            author, published_at, imported_at, youtube_video_id, embed_url, is_active
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                item.id,
                item.source_id,
                item.external_id,
                item.kind.value,
                item.title,
                item.summary,
                item.link_url,
                item.image_url,
                item.author,
                to_db_timestamp(item.published_at),
                to_db_timestamp(item.imported_at),
                item.youtube_video_id,
                item.embed_url,
                int(item.is_active),
            )
            for item in items
        ],
    )
    return max(cursor.rowcount, 0)


def _write_schedule(
    conn: sqlite3.Connection,
    source_id: str,
    expected_next_fetch_at: datetime | None,
    update: ScheduleUpdate,
) -> bool:
    """Conditionally update scheduling state on an open connection."""
    expected = (
        to_db_timestamp(expected_next_fetch_at) if expected_next_fetch_at is not None else None
    )
    cursor = conn.execute(
        """
        UPDATE news_sources SET
            last_fetched_at = ?,
            next_fetch_at = ?,
            error_count = ?,
            last_error = ?,
            last_etag = ?,
            last_modified = ?,
            updated_at = ?
        WHERE id = ? AND next_fetch_at IS ?
        """,
        (
            to_db_timestamp(update.last_fetched_at),
            to_db_timestamp(update.next_fetch_at),
            update.error_count,
            update.last_error,
            update.last_etag,
            update.last_modified,
            to_db_timestamp(datetime.now(UTC)),
            source_id,
            expected,
        ),
    )
    return cursor.rowcount == 1


class NewsSourceRepository:
    """Repository for the source registry."""

    def create(self, source: NewsSourceCreate) -> str:
        """Register a new source and return its ID.

        New sources have no next_fetch_at so they are due immediately.
        """
        source_id = _new_id()
        now = to_db_timestamp(datetime.now(UTC))
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO news_sources (
                    id, name, kind, rss_url, youtube_channel_id, website_url, is_active,
                    fetch_interval_seconds, fetch_interval_minutes, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source_id,
                    source.name,
                    source.kind.value,
                    source.rss_url,
                    source.youtube_channel_id,
                    source.website_url,
                    int(source.is_active),
                    source.fetch_interval_seconds,
                    source.fetch_interval_minutes,
                    now,
                    now,
                ),
            )
            conn.commit()
        return source_id

    def get_by_id(self, source_id: str) -> NewsSource | None:
        """Get a single source by ID."""
        with get_connection() as conn:
            row = conn.execute("SELECT * FROM news_sources WHERE id = ?", (source_id,)).fetchone()
            if row:
                return self._row_to_source(row)
            return None

    def get_all(self, kind: SourceKind | None = None) -> list[NewsSource]:
        """Get all sources, optionally restricted to one kind."""
        with get_connection() as conn:
            if kind is None:
                rows = conn.execute("SELECT * FROM news_sources ORDER BY kind, name").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM news_sources WHERE kind = ? ORDER BY name",
                    (kind.value,),
                ).fetchall()
            return [self._row_to_source(row) for row in rows]

    def find_by_location(self, kind: SourceKind, location: str) -> NewsSource | None:
        """Find a source by feed URL or channel id."""
        column = _LOCATION_COLUMNS.get(kind)
        if column is None:
            return None
        with get_connection() as conn:
            row = conn.execute(
                f"SELECT * FROM news_sources WHERE kind = ? AND {column} = ?",
                (kind.value, location),
            ).fetchone()
            if row:
                return self._row_to_source(row)
            return None

    def list_due(self, kind: SourceKind, now: datetime, limit: int) -> list[NewsSource]:
        """Get active sources of a kind whose next fetch time has arrived.

        Ordered by due time ascending with never-fetched sources first,
        ties broken by insertion order.
        """
        location_clause = ""
        column = _LOCATION_COLUMNS.get(kind)
        if column is not None:
            location_clause = f"AND {column} IS NOT NULL AND TRIM({column}) != ''"

        with get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM news_sources
                WHERE is_active = 1
                  AND kind = ?
                  {location_clause}
                  AND (next_fetch_at IS NULL OR next_fetch_at <= ?)
                ORDER BY COALESCE(next_fetch_at, ?) ASC, rowid ASC
                LIMIT ?
                """,
                (kind.value, to_db_timestamp(now), to_db_timestamp(_EPOCH), limit),
            ).fetchall()
            return [self._row_to_source(row) for row in rows]

    def count_active(self, kind: SourceKind) -> int:
        """Count active sources of a kind."""
        with get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM news_sources WHERE is_active = 1 AND kind = ?",
                (kind.value,),
            ).fetchone()
            return int(row[0])

    def apply_schedule(
        self,
        source_id: str,
        expected_next_fetch_at: datetime | None,
        update: ScheduleUpdate,
    ) -> bool:
        """Write scheduling state back as one conditional update.

        The row is only changed if next_fetch_at still holds the value this
        processing unit read; returns False when another writer got there first.
        """
        with get_connection() as conn:
            applied = _write_schedule(conn, source_id, expected_next_fetch_at, update)
            conn.commit()
            return applied

    def record_fetch(
        self,
        source_id: str,
        expected_next_fetch_at: datetime | None,
        update: ScheduleUpdate,
        new_items: list[FeedItem],
    ) -> tuple[int, bool]:
        """Store a source's new items and its schedule in a single commit.

        Returns (items added, schedule applied). Items are kept even when the
        conditional schedule update loses to another writer.
        """
        with get_connection() as conn:
            added = _insert_items(conn, new_items)
            applied = _write_schedule(conn, source_id, expected_next_fetch_at, update)
            conn.commit()
            return added, applied

    def set_active(self, source_id: str, active: bool) -> None:
        """Enable or disable polling for a source."""
        with get_connection() as conn:
            conn.execute(
                "UPDATE news_sources SET is_active = ?, updated_at = ? WHERE id = ?",
                (int(active), to_db_timestamp(datetime.now(UTC)), source_id),
            )
            conn.commit()

    def force_due(self, source_id: str) -> bool:
        """Clear next_fetch_at so the source is picked up on the next tick."""
        with get_connection() as conn:
            cursor = conn.execute(
                "UPDATE news_sources SET next_fetch_at = NULL, updated_at = ? WHERE id = ?",
                (to_db_timestamp(datetime.now(UTC)), source_id),
            )
            conn.commit()
            return cursor.rowcount == 1

    def _row_to_source(self, row: sqlite3.Row) -> NewsSource:
        """Convert a database row to a NewsSource model."""
        return NewsSource(
            id=row["id"],
            name=row["name"],
            kind=SourceKind(row["kind"]),
            rss_url=row["rss_url"],
            youtube_channel_id=row["youtube_channel_id"],
            website_url=row["website_url"],
            is_active=bool(row["is_active"]),
            fetch_interval_seconds=row["fetch_interval_seconds"] or 0,
            fetch_interval_minutes=row["fetch_interval_minutes"] or 0,
            last_fetched_at=from_db_timestamp(row["last_fetched_at"]),
            next_fetch_at=from_db_timestamp(row["next_fetch_at"]),
            error_count=row["error_count"] or 0,
            last_error=row["last_error"],
            last_etag=row["last_etag"],
            last_modified=row["last_modified"],
            cursor=row["cursor"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )


class FeedItemRepository:
    """Repository for stored feed items."""

    def existing_external_ids(self, source_id: str, external_ids: Iterable[str]) -> set[str]:
        """Return which of the given external ids are already stored for a source."""
        ids = list(dict.fromkeys(external_ids))
        found: set[str] = set()
        if not ids:
            return found

        with get_connection() as conn:
            for start in range(0, len(ids), _IN_CHUNK_SIZE):
                chunk = ids[start : start + _IN_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"""
                    SELECT external_id FROM feed_items
                    WHERE source_id = ? AND external_id IN ({placeholders})
                    """,
                    (source_id, *chunk),
                ).fetchall()
                found.update(row["external_id"] for row in rows)
        return found

    def insert_many(self, items: list[FeedItem]) -> int:
        """Insert items in one transaction and return how many rows were added.

        Rows that collide with the (source_id, external_id) unique index are
        ignored rather than failing the batch.
        """
        if not items:
            return 0

        with get_connection() as conn:
            added = _insert_items(conn, items)
            conn.commit()
            return added

    def has_items(self, source_id: str) -> bool:
        """Check if any item has been stored for a source."""
        with get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM feed_items WHERE source_id = ? LIMIT 1",
                (source_id,),
            ).fetchone()
            return row is not None

    def count(self, source_id: str | None = None) -> int:
        """Count stored items, optionally for a single source."""
        with get_connection() as conn:
            if source_id is None:
                row = conn.execute("SELECT COUNT(*) FROM feed_items").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM feed_items WHERE source_id = ?",
                    (source_id,),
                ).fetchone()
            return int(row[0])

    def get_by_source(self, source_id: str) -> list[FeedItem]:
        """Get every item of a source, newest first."""
        with get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM feed_items
                WHERE source_id = ?
                ORDER BY published_at DESC, rowid DESC
                """,
                (source_id,),
            ).fetchall()
            return [self._row_to_item(row) for row in rows]

    def get_recent(
        self,
        limit: int = 50,
        kind: FeedItemKind | None = None,
        source_id: str | None = None,
    ) -> list[FeedItem]:
        """Get the newest active items, optionally filtered by kind or source."""
        clauses = ["is_active = 1"]
        params: list[object] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        params.append(limit)

        with get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM feed_items
                WHERE {" AND ".join(clauses)}
                ORDER BY published_at DESC, rowid DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
            return [self._row_to_item(row) for row in rows]

    def latest_per_source(self, limit: int = 20) -> list[FeedItem]:
        """Get the newest item of each active source, newest overall first."""
        with get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM (
                    SELECT feed_items.*,
                           ROW_NUMBER() OVER (
                               PARTITION BY feed_items.source_id
                               ORDER BY feed_items.published_at DESC, feed_items.rowid DESC
                           ) AS source_rank
                    FROM feed_items
                    JOIN news_sources ON news_sources.id = feed_items.source_id
                    WHERE feed_items.is_active = 1 AND news_sources.is_active = 1
                )
                WHERE source_rank = 1
                ORDER BY published_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [self._row_to_item(row) for row in rows]

    def _row_to_item(self, row: sqlite3.Row) -> FeedItem:
        """Convert a database row to a FeedItem model."""
        return FeedItem(
            id=row["id"],
            source_id=row["source_id"],
            external_id=row["external_id"],
            kind=FeedItemKind(row["kind"]),
            title=row["title"],
            summary=row["summary"],
            link_url=row["link_url"],
            image_url=row["image_url"],
            author=row["author"],
            published_at=from_db_timestamp(row["published_at"]),
            imported_at=from_db_timestamp(row["imported_at"]),
            youtube_video_id=row["youtube_video_id"],
            embed_url=row["embed_url"],
            is_active=bool(row["is_active"]),
        )


class UserRepository:
    """Repository for post authors."""

    def create(self, name: str) -> str:
        """Create an author and return its ID."""
        user_id = _new_id()
        with get_connection() as conn:
            conn.execute("INSERT INTO users (id, name) VALUES (?, ?)", (user_id, name))
            conn.commit()
        return user_id


class PostRepository:
    """Read access to internal community posts."""

    def create(self, post: PostCreate, created_at: datetime | None = None) -> str:
        """Create a post and return its ID."""
        post_id = _new_id()
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO posts (id, user_id, title, content, image_url, created_at, is_verified)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    post_id,
                    post.user_id,
                    post.title,
                    post.content,
                    post.image_url,
                    to_db_timestamp(created_at or datetime.now(UTC)),
                    int(post.is_verified),
                ),
            )
            conn.commit()
        return post_id

    def list_verified(self, limit: int) -> list[Post]:
        """Get verified posts, newest first."""
        with get_connection() as conn:
            rows = conn.execute(
                """
                SELECT posts.*, users.name AS author_name
                FROM posts
                LEFT JOIN users ON users.id = posts.user_id
                WHERE posts.is_verified = 1
                ORDER BY posts.created_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [self._row_to_post(row) for row in rows]

    def _row_to_post(self, row: sqlite3.Row) -> Post:
        """Convert a database row to a Post model."""
        return Post(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            content=row["content"],
            image_url=row["image_url"],
            is_verified=bool(row["is_verified"]),
            author_name=row["author_name"],
            created_at=from_db_timestamp(row["created_at"]),
        )
