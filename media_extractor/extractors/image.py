"""Image text: OCR first, label detection when the image has no text."""
from media_extractor.extractors.base import Extractor, ExtractionResult, FallbackChain, MediaContext
from media_extractor.logging_conf import logger
from media_extractor.queue.models import MediaType

LABEL_PREFIX = "[Imagem] "


class ImageExtractor(Extractor):
    media_type = MediaType.IMAGE

    def __init__(self, vision):
        self.vision = vision

    def extract(self, media: MediaContext) -> ExtractionResult:
        chain = FallbackChain(media.item.id)
        url = media.best_url

        text = (chain.run("OCR", self.vision.ocr, url) or "").strip()
        if text:
            return ExtractionResult(text, "google-vision-ocr")

        logger.info(f"[{media.item.id}] No text in image, trying label detection")
        labels = chain.run("label detection", self.vision.labels, url) or []
        chain.raise_if_all_failed()

        if labels:
            return ExtractionResult(LABEL_PREFIX + ", ".join(labels), "google-vision-labels")
        return ExtractionResult("", "google-vision-labels")
