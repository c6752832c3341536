"""Map verified internal posts to feed items."""

from feedworker.ingestion.normalize import clean_text, truncate
from feedworker.models.feed_item import (
    MAX_AUTHOR_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    FeedItemCandidate,
    FeedItemKind,
)
from feedworker.models.post import Post


def post_external_id(post_id: str) -> str:
    """External id for an internal post; unique per post by construction."""
    return f"post-{post_id}"


def posts_to_candidates(
    source_id: str,
    posts: list[Post],
    base_url: str,
) -> list[FeedItemCandidate]:
    """Convert posts to candidates, skipping any without a usable title."""
    base = base_url.rstrip("/")
    candidates: list[FeedItemCandidate] = []
    for post in posts:
        title = clean_text(post.title)
        if not title:
            continue
        link = f"{base}/{post.id}"
        candidates.append(
            FeedItemCandidate(
                source_id=source_id,
                external_id=post_external_id(post.id),
                kind=FeedItemKind.ARTICLE,
                title=truncate(title, MAX_TITLE_LENGTH) or title,
                summary=truncate(clean_text(post.content), MAX_SUMMARY_LENGTH),
                link_url=truncate(link, MAX_URL_LENGTH) or link,
                image_url=truncate(clean_text(post.image_url), MAX_URL_LENGTH),
                author=truncate(clean_text(post.author_name), MAX_AUTHOR_LENGTH),
                published_at=post.created_at,
            )
        )
    return candidates
