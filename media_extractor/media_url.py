"""Recover a missing media URL from the webhook that produced the queue item."""
from typing import Any, Dict, List, Optional

from media_extractor.queue.models import QueueItem

DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"
EMAIL_FILE_FIELDS = 20


class UnresolvableSourceError(Exception):
    """The item has no media URL and none can be derived from its webhook."""


def resolve_email_file_url(value: Optional[str]) -> str:
    """Email file fields hold either a full URL or a Google Drive file id."""
    if not value:
        return ""
    if value.startswith(("http://", "https://")):
        return value
    return DRIVE_DOWNLOAD_URL.format(file_id=value)


def extract_email_attachments(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Attachments listed in file_001..file_020, skipping unfilled template fields."""
    attachments = []
    for i in range(1, EMAIL_FILE_FIELDS + 1):
        key = f"file_{i:03d}"
        value = payload.get(key)
        if not value or not isinstance(value, str):
            continue
        if value.startswith("$") or "$request." in value:
            continue
        attachments.append({"index": i - 1, "url": resolve_email_file_url(value), "field": key})
    return attachments


def _file_url(message: Any) -> str:
    if not isinstance(message, dict):
        return ""
    file_info = message.get("File") or {}
    return (file_info.get("Url") or "") if isinstance(file_info, dict) else ""


def umbler_media_url(payload: Dict[str, Any]) -> str:
    """First file URL found in an Umbler webhook payload."""
    body = payload.get("body") if isinstance(payload.get("body"), dict) else {}
    envelope = payload.get("Payload") or body.get("Payload") or {}
    content = envelope.get("Content") or {}

    for message in (
        content.get("Message"),
        content.get("LastMessage"),
        payload.get("Message") or body.get("Message"),
        payload.get("LastMessage") or body.get("LastMessage"),
    ):
        url = _file_url(message)
        if url:
            return url
    return ""


def resolve_media_url(item: QueueItem, webhook: Optional[Dict[str, Any]]) -> str:
    """
    The item's own URL, or one derived from its webhook payload.

    Raises UnresolvableSourceError when neither yields a URL.
    """
    if item.media_url:
        return item.media_url

    source = item.webhook_source or "umbler"
    if webhook is None:
        raise UnresolvableSourceError(f"Webhook {item.webhook_id} not found in {source} webhooks")

    if source == "email":
        index = item.attachment_index or 0
        url = next((a["url"] for a in extract_email_attachments(webhook) if a["index"] == index), "")
    else:
        url = umbler_media_url(webhook)

    if not url:
        raise UnresolvableSourceError(f"No media URL for item {item.id} in webhook {item.webhook_id}")
    return url
