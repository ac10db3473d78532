"""Audio transcription."""
from media_extractor.extractors.base import Extractor, ExtractionResult, MediaContext
from media_extractor.queue.models import MediaType


class AudioExtractor(Extractor):
    """Single-stage: a transcription failure goes straight to the retry policy."""

    media_type = MediaType.AUDIO

    def __init__(self, transcriber):
        self.transcriber = transcriber

    def extract(self, media: MediaContext) -> ExtractionResult:
        return ExtractionResult(self.transcriber.transcribe(media.content), "assemblyai")
