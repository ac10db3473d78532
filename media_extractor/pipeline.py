"""One processing attempt: claim, fetch, identify, store, extract, record."""
from typing import Any, Callable, Dict, Optional, Tuple

from media_extractor import settings
from media_extractor.db import Database
from media_extractor.downloader import Downloader
from media_extractor.extractors.base import MediaContext
from media_extractor.extractors.registry import build_extractors
from media_extractor.logging_conf import logger
from media_extractor.media_url import UnresolvableSourceError, resolve_media_url
from media_extractor.queue.models import MediaType, QueueItem, Status, utcnow
from media_extractor.queue.scheduler import ClaimScheduler
from media_extractor.retry_policy import classify_outcome, decide_failure
from media_extractor.sniffer import ResolvedType, normalize_mime, resolve_type, skip_decision
from media_extractor.storage import StorageUploader, object_key


class ProcessingFailed(Exception):
    """An attempt failed; the retry policy has already been applied and persisted."""

    def __init__(self, item_id: str, message: str):
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.message = message


class ClaimLost(Exception):
    """The stale-claim reset handed this item to another worker mid-attempt."""


class Pipeline:
    """
    Processes queue items one at a time.

    Every collaborator is injectable; the defaults talk to PostgreSQL, HTTP
    and S3 using settings.
    """

    def __init__(self, db=None, downloader=None, storage=None, vision=None, transcriber=None,
                 extractors=None, clock: Optional[Callable] = None):
        self.db = db or Database()
        self.downloader = downloader or Downloader()
        self.storage = storage or StorageUploader()
        self.extractors = extractors or build_extractors(vision, transcriber, self.storage)
        self.clock = clock or utcnow
        self.scheduler = ClaimScheduler(self.db)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process_next(self) -> Dict[str, Any]:
        """
        Claim and process the next eligible item.

        Returns {"processed": False} when the queue has nothing eligible.

        Raises:
            ProcessingFailed when the attempt failed (after recording the retry)
        """
        now = self.clock()
        self.db.reset_stuck_items(settings.STUCK_PROCESSING_MINUTES, now)

        item = self.scheduler.claim_next(now)
        if item is None:
            return {"processed": False}
        return self._process_claimed(item)

    def process_item(self, item_id: str) -> Dict[str, Any]:
        """Requeue one item and process it right away."""
        if not self.db.requeue(item_id):
            return self._not_requeued(item_id)

        item = self.db.claim(item_id, self.clock())
        if item is None:
            logger.info(f"Item {item_id} was claimed by another worker")
            return {"processed": False, "itemId": item_id}
        return self._process_claimed(item)

    def retry_item(self, item_id: str) -> Dict[str, Any]:
        """Reset an item's retry budget and put it back in the queue."""
        if not self.db.reset_for_retry(item_id):
            return self._not_requeued(item_id)
        logger.info(f"Item {item_id} reset for retry")
        return {"itemId": item_id, "status": Status.QUEUED}

    def _not_requeued(self, item_id: str) -> Dict[str, Any]:
        """Operator actions leave items a worker is holding alone."""
        if self.db.get_item(item_id) is None:
            raise LookupError(f"Item {item_id} not found")
        logger.info(f"Item {item_id} is being processed, left untouched")
        return {"processed": False, "itemId": item_id, "status": Status.PROCESSING, "busy": True}

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _process_claimed(self, item: QueueItem) -> Dict[str, Any]:
        try:
            url = self._resolve_url(item)
            return self._extract(item, url)
        except ClaimLost:
            return self._claim_lost(item)
        except UnresolvableSourceError as e:
            if not self.db.mark_unresolvable(item.id, str(e), self.clock(), item.last_attempt_at):
                return self._claim_lost(item)
            return {"processed": True, "itemId": item.id, "success": False, "error": str(e)}
        except Exception as e:
            message = str(e)[:500] or e.__class__.__name__
            logger.error(f"[{item.id}] Processing failed: {message}")
            decision = decide_failure(item.attempts, item.max_attempts, self.clock())
            if not self.db.mark_failed(item.id, message, decision.attempts, decision.status,
                                       decision.next_retry_at, self.clock(), item.last_attempt_at):
                return self._claim_lost(item)
            raise ProcessingFailed(item.id, message) from e

    def _resolve_url(self, item: QueueItem) -> str:
        if item.media_url:
            return item.media_url

        webhook = self.db.get_webhook(item.webhook_source, item.webhook_id)
        url = resolve_media_url(item, webhook)
        if not self.db.update_media_url(item.id, url, item.last_attempt_at):
            raise ClaimLost(item.id)
        logger.info(f"[{item.id}] media URL recovered from webhook: {url}")
        return url

    def _extract(self, item: QueueItem, url: str) -> Dict[str, Any]:
        media = self.downloader.download(url)
        resolved = resolve_type(
            media.content,
            item.media_mime_type,
            item.declared_media_type,
            content_type=media.content_type,
            file_name=item.media_file_name or "",
        )
        self._record_type_correction(item, resolved)
        logger.info(f"[{item.id}] {item.media_file_name} | {len(media.content)}b "
                    f"{resolved.media_type.value} ({resolved.mime_type or 'no mime'})")

        skip = skip_decision(media.content, resolved)
        if skip:
            logger.info(f"[{item.id}] Skipping extraction: {skip.method}")
            if not self.db.mark_completed(item.id, Status.DONE, skip.placeholder, skip.method,
                                          None, None, self.clock(), item.last_attempt_at):
                raise ClaimLost(item.id)
            return self._response(item, skip.placeholder, skip.method, None)

        stored_url, stored_path = self._store(item, media.content, resolved)

        extractor = self.extractors.get(resolved.media_type) or self.extractors[MediaType.UNKNOWN]
        result = extractor.extract(MediaContext(
            item=item,
            content=media.content,
            mime_type=resolved.mime_type,
            media_type=resolved.media_type,
            source_url=media.url,
            stored_url=stored_url,
        ))

        status = classify_outcome(result.text, resolved.media_type)
        if not self.db.mark_completed(item.id, status, result.text, result.method,
                                      stored_url, stored_path, self.clock(), item.last_attempt_at):
            raise ClaimLost(item.id)
        logger.info(f"[{item.id}] {len(result.text or '')} chars via {result.method} -> {status}")
        return self._response(item, result.text, result.method, stored_url)

    def _record_type_correction(self, item: QueueItem, resolved: ResolvedType) -> None:
        if not resolved.sniffed:
            return
        if (resolved.mime_type == normalize_mime(item.media_mime_type)
                and resolved.media_type == item.declared_media_type):
            return
        logger.info(f"[{item.id}] Type corrected: {item.media_mime_type or 'none'} -> {resolved.mime_type} "
                    f"({item.media_type} -> {resolved.media_type.value})")
        if not self.db.update_media_type(item.id, resolved.media_type.value, resolved.mime_type,
                                         item.last_attempt_at):
            raise ClaimLost(item.id)

    def _store(self, item: QueueItem, content: bytes,
               resolved: ResolvedType) -> Tuple[Optional[str], Optional[str]]:
        """Upload the original bytes; a failure leaves extraction on the source URL."""
        path = object_key(settings.STORAGE_PREFIX, resolved.media_type.value, item.webhook_id,
                          item.media_file_name or item.id)
        try:
            return self.storage.upload(content, path, resolved.mime_type), path
        except Exception as e:
            logger.warning(f"[{item.id}] Upload failed, continuing with source URL: {e}")
            return None, None

    @staticmethod
    def _claim_lost(item: QueueItem) -> Dict[str, Any]:
        logger.warning(f"[{item.id}] Claim lost to another worker, attempt discarded")
        return {"processed": True, "itemId": item.id, "success": False, "error": "claim lost"}

    @staticmethod
    def _response(item: QueueItem, text: Optional[str], method: str,
                  stored_url: Optional[str]) -> Dict[str, Any]:
        return {
            "processed": True,
            "itemId": item.id,
            "success": True,
            "extractedText": text,
            "processingMethod": method,
            "storedUrl": stored_url,
        }
