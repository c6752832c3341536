"""Shared fixtures: an in-memory catalog, a fixed clock and a source factory."""

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from feedworker.models.source import NewsSourceCreate, SourceKind

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def use_test_database() -> Iterator[sqlite3.Connection]:
    """Point every repository at a fresh in-memory catalog."""
    from feedworker.db.migrate import SCHEMA

    memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
    memory_conn.row_factory = sqlite3.Row
    memory_conn.execute("PRAGMA foreign_keys=ON")
    memory_conn.executescript(SCHEMA)
    memory_conn.commit()

    @contextmanager
    def shared_connection() -> Iterator[sqlite3.Connection]:
        yield memory_conn

    # Each module binds get_connection at import
    with (
        patch("feedworker.db.connection.get_connection", shared_connection),
        patch("feedworker.db.repository.get_connection", shared_connection),
        patch("feedworker.db.migrate.get_connection", shared_connection),
    ):
        yield memory_conn

    memory_conn.close()


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' shared by scheduling tests."""
    return NOW


@pytest.fixture
def make_source() -> Callable[..., str]:
    """Register a source and return its id."""
    from feedworker.db.repository import NewsSourceRepository

    repo = NewsSourceRepository()
    counter = {"n": 0}

    def _make(kind: SourceKind = SourceKind.RSS, **overrides: object) -> str:
        counter["n"] += 1
        n = counter["n"]
        data: dict[str, object] = {"name": f"Source {n}", "kind": kind}
        if kind == SourceKind.RSS:
            data["rss_url"] = f"https://news{n}.example.com/feed.xml"
        elif kind == SourceKind.YOUTUBE:
            data["youtube_channel_id"] = f"UCchannel{n:04d}"
        data.update(overrides)
        return repo.create(NewsSourceCreate(**data))  # type: ignore[arg-type]

    return _make
