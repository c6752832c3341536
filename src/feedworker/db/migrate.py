"""Database migrations for the feed catalog."""

from feedworker.db.connection import get_connection

SCHEMA = """
-- Authors of internal posts
CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL
);

-- Internal community content
CREATE TABLE IF NOT EXISTS posts (
  id TEXT PRIMARY KEY,
  user_id TEXT,
  title TEXT NOT NULL,
  content TEXT,
  image_url TEXT,
  created_at TIMESTAMP NOT NULL,
  is_verified BOOLEAN DEFAULT 0,

  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_posts_verified_created ON posts(is_verified, created_at DESC);

-- Source registry with scheduling and conditional GET state
CREATE TABLE IF NOT EXISTS news_sources (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  kind TEXT NOT NULL,
  rss_url TEXT UNIQUE,
  youtube_channel_id TEXT UNIQUE,
  website_url TEXT,
  is_active BOOLEAN DEFAULT 1,

  fetch_interval_seconds INTEGER DEFAULT 0,
  fetch_interval_minutes INTEGER DEFAULT 30,
  last_fetched_at TIMESTAMP,
  next_fetch_at TIMESTAMP,
  error_count INTEGER DEFAULT 0,
  last_error TEXT,

  last_etag TEXT,
  last_modified TEXT,
  cursor TEXT,

  created_at TIMESTAMP NOT NULL,
  updated_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sources_kind ON news_sources(kind);
CREATE INDEX IF NOT EXISTS idx_sources_due ON news_sources(is_active, next_fetch_at);

-- Canonical feed records; (source_id, external_id) is the dedupe key
CREATE TABLE IF NOT EXISTS feed_items (
  id TEXT PRIMARY KEY,
  source_id TEXT NOT NULL,
  external_id TEXT NOT NULL,
  kind TEXT NOT NULL,
  title TEXT NOT NULL,
  summary TEXT,
  link_url TEXT NOT NULL,
  image_url TEXT,
  author TEXT,
  published_at TIMESTAMP NOT NULL,
  imported_at TIMESTAMP NOT NULL,
  youtube_video_id TEXT,
  embed_url TEXT,
  is_active BOOLEAN DEFAULT 1,

  FOREIGN KEY (source_id) REFERENCES news_sources(id) ON DELETE CASCADE,
  UNIQUE (source_id, external_id)
);

CREATE INDEX IF NOT EXISTS idx_items_source ON feed_items(source_id);
CREATE INDEX IF NOT EXISTS idx_items_published ON feed_items(published_at DESC);
CREATE INDEX IF NOT EXISTS idx_items_active_published ON feed_items(is_active, published_at DESC);
"""


def migrate() -> None:
    """Run database migrations."""
    with get_connection() as conn:
        conn.executescript(SCHEMA)
        conn.commit()
    print("✓ Database migrations complete")


if __name__ == "__main__":
    migrate()
