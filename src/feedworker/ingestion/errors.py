"""Errors raised while ingesting a single source."""


class IngestionError(Exception):
    """Base error for a failed processing unit."""


class FetchFailedError(IngestionError):
    """Upstream answered with a non-success status that is not throttling."""

    def __init__(self, url: str, status_code: int, body_excerpt: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        message = f"HTTP {status_code} fetching {url}"
        if body_excerpt:
            message = f"{message} :: {body_excerpt}"
        super().__init__(message)


class FeedParseError(IngestionError):
    """Payload could not be read as a feed."""
