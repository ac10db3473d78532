"""MediaType -> extractor wiring."""
from typing import Dict

from media_extractor.extractors.audio import AudioExtractor
from media_extractor.extractors.base import Extractor
from media_extractor.extractors.document import DocumentExtractor
from media_extractor.extractors.image import ImageExtractor
from media_extractor.extractors.passthrough import UnknownExtractor, VideoExtractor
from media_extractor.extractors.pdf import PdfExtractor
from media_extractor.queue.models import MediaType


def build_extractors(vision, transcriber, storage) -> Dict[MediaType, Extractor]:
    extractors = [
        ImageExtractor(vision),
        AudioExtractor(transcriber),
        PdfExtractor(vision, storage),
        DocumentExtractor(),
        VideoExtractor(),
        UnknownExtractor(),
    ]
    return {e.media_type: e for e in extractors}
