"""Backoff schedule and outcome classification for queue items."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from media_extractor import settings
from media_extractor.queue.models import MediaType, Status


@dataclass(frozen=True)
class FailureDecision:
    """State to persist after a failed processing attempt."""

    attempts: int
    status: str
    next_retry_at: Optional[datetime]

    @property
    def terminal(self) -> bool:
        return self.status == Status.ERROR


def backoff_seconds(attempts: int, schedule: Sequence[int] = None) -> int:
    """
    Delay before the next retry after `attempts` failures.

    The schedule is indexed by attempt number and its last entry repeats:
    30s, 120s, 600s, 600s, ...
    """
    schedule = tuple(schedule or settings.BACKOFF_SCHEDULE)
    if attempts < 1:
        return schedule[0]
    return schedule[min(attempts, len(schedule)) - 1]


def decide_failure(attempts: int, max_attempts: int, now: datetime,
                   schedule: Sequence[int] = None) -> FailureDecision:
    """Increment attempts and decide between requeue with backoff and terminal error."""
    new_attempts = (attempts or 0) + 1
    if new_attempts >= max_attempts:
        return FailureDecision(attempts=max_attempts, status=Status.ERROR, next_retry_at=None)
    delay = backoff_seconds(new_attempts, schedule)
    return FailureDecision(
        attempts=new_attempts,
        status=Status.QUEUED,
        next_retry_at=now + timedelta(seconds=delay),
    )


def classify_outcome(text: Optional[str], media_type: MediaType) -> str:
    """A successful extraction without usable text needs review, except for video."""
    if media_type is not MediaType.VIDEO and not (text or "").strip():
        return Status.NEEDS_REVIEW
    return Status.DONE
