"""Shared fixtures: an in-memory queue store, fake services and generated media."""
import io
import threading
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from media_extractor.downloader import DownloadedMedia
from media_extractor.queue.models import QueueItem, Status

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeQueueStore:
    """Implements the Database operations used by the scheduler and pipeline."""

    def __init__(self, items=None, webhooks=None):
        self.items = {item.id: item for item in (items or [])}
        self.webhooks = webhooks or {}
        self.type_corrections = []
        self.lost_writes = []
        self.closed = False
        self._lock = threading.Lock()

    def add(self, item):
        self.items[item.id] = item
        return item

    def fetch_queued(self, limit, now):
        with self._lock:
            eligible = [QueueItem(**vars(i)) for i in self.items.values()
                        if i.status == Status.QUEUED and (i.next_retry_at is None or i.next_retry_at <= now)]
        eligible.sort(key=lambda i: i.sort_key, reverse=True)
        return eligible[:limit]

    def get_item(self, item_id):
        return self.items.get(item_id)

    def get_webhook(self, source, webhook_id):
        return self.webhooks.get((source, webhook_id))

    def claim(self, item_id, now):
        with self._lock:
            item = self.items.get(item_id)
            if item is None or item.status != Status.QUEUED:
                return None
            item.status = Status.PROCESSING
            item.last_attempt_at = now
            return QueueItem(**vars(item))

    def reset_stuck_items(self, minutes, now):
        count = 0
        with self._lock:
            for item in self.items.values():
                started = item.last_attempt_at or item.created_at
                if item.status == Status.PROCESSING and started and started < now - timedelta(minutes=minutes):
                    item.status = Status.QUEUED
                    count += 1
        return count

    def _held(self, item_id, claimed_at):
        """Same fence as the SQL writes: still processing under this claim."""
        item = self.items.get(item_id)
        if item is None or item.status != Status.PROCESSING or item.last_attempt_at != claimed_at:
            self.lost_writes.append(item_id)
            return None
        return item

    def update_media_url(self, item_id, media_url, claimed_at):
        with self._lock:
            item = self._held(item_id, claimed_at)
            if item is None:
                return False
            item.media_url = media_url
            return True

    def update_media_type(self, item_id, media_type, mime_type, claimed_at):
        with self._lock:
            item = self._held(item_id, claimed_at)
            if item is None:
                return False
            item.media_type = media_type
            item.media_mime_type = mime_type
            self.type_corrections.append((item_id, media_type, mime_type))
            return True

    def mark_completed(self, item_id, status, extracted_text, processing_method, stored_url, stored_path,
                       now, claimed_at):
        with self._lock:
            item = self._held(item_id, claimed_at)
            if item is None:
                return False
            item.status = status
            item.extracted_text = extracted_text
            item.processing_method = processing_method
            item.stored_url = stored_url
            item.stored_path = stored_path
            item.processed_at = now
            item.next_retry_at = None
            item.error = None
            return True

    def mark_failed(self, item_id, error, attempts, status, next_retry_at, now, claimed_at):
        with self._lock:
            item = self._held(item_id, claimed_at)
            if item is None:
                return False
            item.status = status
            item.attempts = attempts
            item.error = error
            item.last_attempt_at = now
            item.next_retry_at = next_retry_at
            return True

    def mark_unresolvable(self, item_id, error, now, claimed_at):
        with self._lock:
            item = self._held(item_id, claimed_at)
            if item is None:
                return False
            item.status = Status.ERROR
            item.error = error
            item.last_attempt_at = now
            item.next_retry_at = None
            return True

    def reset_for_retry(self, item_id):
        with self._lock:
            item = self.items.get(item_id)
            if item is None or item.status == Status.PROCESSING:
                return False
            item.status = Status.QUEUED
            item.attempts = 0
            item.error = None
            item.next_retry_at = None
            item.last_attempt_at = None
            return True

    def requeue(self, item_id):
        with self._lock:
            item = self.items.get(item_id)
            if item is None or item.status == Status.PROCESSING:
                return False
            item.status = Status.QUEUED
            item.next_retry_at = None
            return True

    def close(self):
        self.closed = True


class FakeVision:
    def __init__(self, ocr_text="", labels=None, ocr_error=None, label_error=None):
        self.ocr_text = ocr_text
        self.label_list = labels or []
        self.ocr_error = ocr_error
        self.label_error = label_error
        self.ocr_calls = []
        self.label_calls = []

    def ocr(self, url):
        self.ocr_calls.append(url)
        if self.ocr_error:
            raise self.ocr_error
        return self.ocr_text(url) if callable(self.ocr_text) else self.ocr_text

    def labels(self, url):
        self.label_calls.append(url)
        if self.label_error:
            raise self.label_error
        return list(self.label_list)


class FakeTranscriber:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def transcribe(self, audio):
        self.calls += 1
        if self.error:
            raise self.error
        return self.text


class FakeStorage:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    def upload(self, data, key, content_type):
        if self.error:
            raise self.error
        self.uploads.append((key, content_type, len(data)))
        return f"https://cdn.test/{key}"


class FakeDownloader:
    def __init__(self, files=None, error=None):
        self.files = files or {}
        self.error = error
        self.urls = []

    def download(self, url):
        self.urls.append(url)
        if self.error:
            raise self.error
        content, content_type = self.files[url]
        return DownloadedMedia(content=content, content_type=content_type, url=url)


def make_item(item_id="item-1", **kwargs):
    defaults = dict(
        webhook_id="wh-1",
        media_url=f"https://files.test/{item_id}",
        media_mime_type="image/jpeg",
        media_type="image",
        media_file_name=f"{item_id}.jpg",
        created_at=NOW - timedelta(hours=1),
    )
    defaults.update(kwargs)
    return QueueItem(id=item_id, **defaults)


def make_jpeg(width=400, height=300, quality=95) -> bytes:
    """Noise compresses badly, so the JPEG stays comfortably above size thresholds."""
    image = Image.effect_noise((width, height), 80).convert("RGB")
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def make_image_pdf(width=400, height=300) -> bytes:
    """Single-page PDF whose only content is a JPEG (DCTDecode) image, like a scan."""
    image = Image.effect_noise((width, height), 80).convert("RGB")
    out = io.BytesIO()
    image.save(out, format="PDF", resolution=72.0)
    return out.getvalue()


@pytest.fixture
def store():
    return FakeQueueStore()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()


@pytest.fixture
def image_pdf_bytes():
    return make_image_pdf()
