"""SQLite connections for the catalog database."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from feedworker.config import get_settings

# Several worker instances may write at once; wait rather than fail on locks
BUSY_TIMEOUT_SECONDS = 30.0


def get_db_path() -> Path:
    """Resolve the catalog path from settings, creating its directory."""
    db_path = get_settings().db_path.expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Open a catalog connection in WAL mode with foreign keys enforced.

    The feed_items cascade on source deletion relies on foreign keys.
    """
    conn = sqlite3.connect(db_path or get_db_path(), timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        yield conn
    finally:
        conn.close()
