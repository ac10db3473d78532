"""Media types that are recorded without extraction."""
from media_extractor.extractors.base import Extractor, ExtractionResult, MediaContext
from media_extractor.queue.models import MediaType


class VideoExtractor(Extractor):
    media_type = MediaType.VIDEO

    def extract(self, media: MediaContext) -> ExtractionResult:
        return ExtractionResult(None, "skipped-video")


class UnknownExtractor(Extractor):
    """No extractor for this type; the empty result sends the item to review."""

    media_type = MediaType.UNKNOWN

    def extract(self, media: MediaContext) -> ExtractionResult:
        return ExtractionResult(None, "unsupported")
