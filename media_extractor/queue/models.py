"""Queue data models."""
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

from media_extractor import settings


class Status:
    """Lifecycle states of a queue item."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    NEEDS_REVIEW = "needs_review"


class MediaType(str, Enum):
    """Closed set of media categories, one extractor per member."""

    IMAGE = "image"
    AUDIO = "audio"
    PDF = "pdf"
    DOCX = "docx"
    VIDEO = "video"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MediaType":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MSWORD_MIME = "application/msword"
ZIP_MIME = "application/zip"


def classify_media_type(mime_type: Optional[str]) -> MediaType:
    """Map a MIME type to its media category."""
    if not mime_type:
        return MediaType.IMAGE
    m = mime_type.lower()
    if m.startswith("image/"):
        return MediaType.IMAGE
    if m.startswith("audio/"):
        return MediaType.AUDIO
    if m == "application/pdf":
        return MediaType.PDF
    if m in (DOCX_MIME, MSWORD_MIME, ZIP_MIME, "application/x-zip-compressed") or "wordprocessingml" in m:
        return MediaType.DOCX
    if m.startswith("video/"):
        return MediaType.VIDEO
    return MediaType.UNKNOWN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueueItem:
    """One attachment awaiting text extraction (a row of file_processing_queue)."""

    id: str
    webhook_id: str
    status: str = Status.QUEUED
    webhook_source: str = "umbler"  # "umbler" or "email"
    attachment_index: Optional[int] = None
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    media_type: Optional[str] = None
    media_file_name: Optional[str] = None
    attempts: int = 0
    max_attempts: int = field(default_factory=lambda: settings.MAX_ATTEMPTS)
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    extracted_text: Optional[str] = None
    processing_method: Optional[str] = None
    error: Optional[str] = None
    stored_url: Optional[str] = None
    stored_path: Optional[str] = None
    processed_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def declared_media_type(self) -> MediaType:
        return MediaType.parse(self.media_type)

    @property
    def sort_key(self) -> datetime:
        """Recency used for candidate ordering (received, else created)."""
        return self.received_at or self.created_at or datetime.min.replace(tzinfo=timezone.utc)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueItem":
        """Build an item from a database row, ignoring unknown columns."""
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in dict(row).items() if k in known}
        data["id"] = str(data["id"])
        if data.get("attempts") is None:
            data["attempts"] = 0
        # rows without their own limit use the configured MAX_ATTEMPTS
        if data.get("max_attempts") is None:
            data.pop("max_attempts", None)
        return cls(**data)
