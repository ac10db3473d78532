"""Shared types for the per-media-type extractors."""
from dataclasses import dataclass
from typing import Any, Callable, Optional

from media_extractor.logging_conf import logger
from media_extractor.queue.models import MediaType, QueueItem


class ExtractionError(Exception):
    """Every stage of an extraction chain failed."""


@dataclass
class ExtractionResult:
    text: Optional[str]
    method: str


@dataclass
class MediaContext:
    """Everything an extractor may use for one claimed item."""

    item: QueueItem
    content: bytes
    mime_type: str
    media_type: MediaType
    source_url: str
    stored_url: Optional[str] = None

    @property
    def best_url(self) -> str:
        """Durable copy when the upload succeeded, else the source URL."""
        return self.stored_url or self.source_url


class Extractor:
    """Strategy for one MediaType."""

    media_type: MediaType = MediaType.UNKNOWN

    def extract(self, media: MediaContext) -> ExtractionResult:
        raise NotImplementedError


class FallbackChain:
    """
    Runs the stages of one extraction chain.

    A stage that raises is logged and counts as an empty result so the next
    fallback still runs. Only when every attempted stage raised does the chain
    give up with ExtractionError.
    """

    def __init__(self, item_id: str):
        self.item_id = item_id
        self.attempted = 0
        self.failed = 0
        self.last_error: Optional[Exception] = None

    def run(self, stage: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        self.attempted += 1
        try:
            return func(*args, **kwargs)
        except Exception as e:
            self.failed += 1
            self.last_error = e
            logger.warning(f"[{self.item_id}] {stage} failed: {e}")
            return None

    def raise_if_all_failed(self) -> None:
        if self.attempted and self.failed == self.attempted:
            raise ExtractionError(
                f"all {self.attempted} extraction stages failed: {self.last_error}"
            ) from self.last_error
