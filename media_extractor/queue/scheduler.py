"""Selection and exclusive claiming of the next queue item."""
from datetime import datetime
from typing import Iterable, List, Optional

from media_extractor import settings
from media_extractor.logging_conf import logger
from media_extractor.queue.models import QueueItem, utcnow


def select_candidates(items: Iterable[QueueItem], now: datetime) -> List[QueueItem]:
    """Drop items still backing off and order the rest newest first."""
    eligible = [item for item in items if item.next_retry_at is None or item.next_retry_at <= now]
    eligible.sort(key=lambda item: item.sort_key, reverse=True)
    return eligible


class ClaimScheduler:
    """
    Claims at most one queued item per call.

    Exclusivity comes from the store's conditional update (queued ->
    processing); concurrent schedulers in other processes that lose the race
    simply move on to their next candidate.
    """

    def __init__(self, store, batch_size: int = None):
        self.store = store
        self.batch_size = batch_size or settings.CLAIM_BATCH_SIZE

    def claim_next(self, now: Optional[datetime] = None) -> Optional[QueueItem]:
        """Return the claimed item, or None when nothing could be claimed."""
        now = now or utcnow()
        candidates = select_candidates(self.store.fetch_queued(self.batch_size, now), now)

        if not candidates:
            logger.debug("No eligible items in queue")
            return None

        for candidate in candidates:
            claimed = self.store.claim(candidate.id, now)
            if claimed is None:
                logger.debug(f"Lost claim race for {candidate.id}, trying next candidate")
                continue
            logger.info(f"Claimed {claimed.id} ({claimed.media_type}, {claimed.media_file_name})")
            return claimed

        logger.info(f"All {len(candidates)} candidates were claimed by other workers")
        return None
