"""Worker configuration via environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Floors that keep a bad environment value from hammering upstreams
MIN_RSS_TICK_SECONDS = 5
MIN_YOUTUBE_TICK_SECONDS = 10
MIN_INTERNAL_TICK_SECONDS = 5
MIN_REQUEST_TIMEOUT_SECONDS = 5


def _tick_seconds(seconds: int, minutes: int, floor: int) -> int:
    """Prefer the seconds setting when set, else fall back to legacy minutes."""
    resolved = seconds if seconds > 0 else minutes * 60
    return max(floor, resolved)


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FEEDWORKER_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    db_path: Path = Field(
        default=Path.home() / ".config" / "feedworker" / "feedworker.db",
        description="Path to SQLite catalog database",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    heartbeat_seconds: int = Field(default=30, ge=1, description="Heartbeat log interval")

    # Tick intervals (seconds preferred, minutes kept for older deployments)
    rss_tick_seconds: int = Field(default=0, description="RSS tick interval in seconds")
    rss_tick_minutes: int = Field(default=2, description="Legacy RSS tick interval in minutes")
    youtube_tick_seconds: int = Field(default=0, description="YouTube tick interval in seconds")
    youtube_tick_minutes: int = Field(
        default=2, description="Legacy YouTube tick interval in minutes"
    )
    internal_tick_seconds: int = Field(
        default=0, description="Internal posts tick interval in seconds"
    )
    internal_tick_minutes: int = Field(
        default=2, description="Legacy internal posts tick interval in minutes"
    )

    # Per-run work bounds
    max_sources_per_run: int = Field(default=20, description="Due sources taken per tick")
    max_items_per_source: int = Field(default=25, description="Items kept per source per run")
    max_parallel_fetches: int = Field(default=5, description="Concurrent fetches per tick")

    # RSS HTTP
    rss_timeout_seconds: float = Field(default=20.0, description="RSS request timeout")
    rss_user_agent: str = Field(
        default="Mozilla/5.0 (compatible; FeedWorker/1.0; +https://wargalnews.com)",
        description="User-Agent sent to RSS/Atom hosts",
    )

    # YouTube HTTP
    youtube_timeout_seconds: float = Field(default=20.0, description="YouTube request timeout")
    youtube_user_agent: str = Field(
        default="FeedWorker/1.0 (+https://wargalnews.com)",
        description="User-Agent sent to YouTube channel feeds",
    )
    youtube_throttle_backoff_minutes: int = Field(
        default=10, description="Flat backoff after YouTube throttles a channel"
    )
    youtube_min_delay_ms: int = Field(
        default=500, description="Minimum spacing between any two YouTube requests"
    )

    # Internal posts
    internal_reschedule_seconds: int = Field(
        default=120, description="Next-fetch delay for internal posts sources"
    )
    internal_post_base_url: str = Field(
        default="https://wargalnews.com/community",
        description="Base URL used to build links to internal posts",
    )

    @property
    def rss_tick_interval(self) -> int:
        return _tick_seconds(self.rss_tick_seconds, self.rss_tick_minutes, MIN_RSS_TICK_SECONDS)

    @property
    def youtube_tick_interval(self) -> int:
        return _tick_seconds(
            self.youtube_tick_seconds, self.youtube_tick_minutes, MIN_YOUTUBE_TICK_SECONDS
        )

    @property
    def internal_tick_interval(self) -> int:
        return _tick_seconds(
            self.internal_tick_seconds, self.internal_tick_minutes, MIN_INTERNAL_TICK_SECONDS
        )

    @property
    def rss_timeout(self) -> float:
        return max(float(MIN_REQUEST_TIMEOUT_SECONDS), self.rss_timeout_seconds)

    @property
    def youtube_timeout(self) -> float:
        return max(float(MIN_REQUEST_TIMEOUT_SECONDS), self.youtube_timeout_seconds)

    @property
    def sources_per_run(self) -> int:
        return max(1, self.max_sources_per_run)

    @property
    def items_per_source(self) -> int:
        return max(1, self.max_items_per_source)

    @property
    def parallel_fetches(self) -> int:
        return max(1, self.max_parallel_fetches)

    @property
    def youtube_min_delay(self) -> float:
        return max(0, self.youtube_min_delay_ms) / 1000.0


def get_settings() -> Settings:
    """Get worker settings."""
    return Settings()
