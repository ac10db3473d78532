"""PDF text: text layer, then OCR of an embedded scan, then OCR of the document."""
import io

from pypdf import PdfReader

from media_extractor import settings
from media_extractor.extractors.base import Extractor, ExtractionResult, FallbackChain, MediaContext
from media_extractor.extractors.pdf_images import find_embedded_image
from media_extractor.logging_conf import logger
from media_extractor.queue.models import MediaType
from media_extractor.storage import object_key


def read_text_layer(buffer) -> str:
    """Concatenated text of every page."""
    reader = PdfReader(io.BytesIO(buffer))
    pages = [(page.extract_text() or "") for page in reader.pages]
    return "\n".join(pages).strip()


class PdfExtractor(Extractor):
    media_type = MediaType.PDF

    def __init__(self, vision, storage, min_text_chars: int = None, min_image_bytes: int = None):
        self.vision = vision
        self.storage = storage
        self.min_text_chars = settings.PDF_TEXT_MIN_CHARS if min_text_chars is None else min_text_chars
        self.min_image_bytes = settings.PDF_IMAGE_MIN_BYTES if min_image_bytes is None else min_image_bytes

    def extract(self, media: MediaContext) -> ExtractionResult:
        item_id = media.item.id
        chain = FallbackChain(item_id)

        # The parser owns its copy; media.content stays intact for the fallbacks
        text = chain.run("PDF text layer", read_text_layer, bytearray(media.content)) or ""
        best = ExtractionResult(text, "pypdf")
        if len(text) > self.min_text_chars:
            return best

        logger.info(f"[{item_id}] PDF text layer has {len(text)} chars, looking for an embedded image")
        image_text = chain.run("PDF embedded image OCR", self._ocr_embedded_image, media) or ""
        if len(image_text) > len(best.text):
            best = ExtractionResult(image_text, "google-vision-pdf-image")

        if best.method == "pypdf":
            doc_text = (chain.run("PDF document OCR", self.vision.ocr, media.source_url) or "").strip()
            if len(doc_text) > len(best.text):
                best = ExtractionResult(doc_text, "google-vision-pdf")

        chain.raise_if_all_failed()
        return best

    def _ocr_embedded_image(self, media: MediaContext) -> str:
        image = find_embedded_image(media.content, self.min_image_bytes)
        if image is None:
            logger.info(f"[{media.item.id}] No usable embedded image in PDF")
            return ""

        key = object_key(settings.STORAGE_PREFIX, "pdf-images", media.item.webhook_id, f"{media.item.id}.jpg")
        url = self.storage.upload(image.data, key, "image/jpeg")
        return (self.vision.ocr(url) or "").strip()
