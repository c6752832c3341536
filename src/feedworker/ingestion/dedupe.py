"""Select the candidates a source has not produced before."""

import logging
import uuid
from datetime import datetime

from feedworker.db.repository import FeedItemRepository
from feedworker.models.feed_item import FeedItem, FeedItemCandidate

logger = logging.getLogger(__name__)


def select_new_items(
    items: FeedItemRepository,
    source_id: str,
    candidates: list[FeedItemCandidate],
    now: datetime,
) -> list[FeedItem]:
    """Build catalog rows for the candidates a source has not stored yet.

    Ids already in the catalog are skipped and repeats inside one batch keep
    the first occurrence. Nothing is written here.
    """
    if not candidates:
        return []

    external_ids = list(dict.fromkeys(c.external_id for c in candidates))
    existing = items.existing_external_ids(source_id, external_ids)

    seen = set(existing)
    new_items: list[FeedItem] = []
    for candidate in candidates:
        if candidate.external_id in seen:
            continue
        seen.add(candidate.external_id)
        new_items.append(
            FeedItem(
                **candidate.model_dump(exclude={"source_id"}),
                source_id=source_id,
                id=uuid.uuid4().hex,
                imported_at=now,
            )
        )

    logger.debug(
        "Dedupe source=%s candidates=%d existing=%d new=%d",
        source_id,
        len(candidates),
        len(existing),
        len(new_items),
    )
    return new_items
