"""Tests for recovering media URLs from webhook payloads."""
import pytest

from media_extractor.media_url import (
    UnresolvableSourceError,
    extract_email_attachments,
    resolve_email_file_url,
    resolve_media_url,
    umbler_media_url,
)

from conftest import make_item


def test_resolve_email_file_url():
    assert resolve_email_file_url("https://x.test/a.pdf") == "https://x.test/a.pdf"
    assert resolve_email_file_url("1AbCdEf") == "https://drive.google.com/uc?export=download&id=1AbCdEf"
    assert resolve_email_file_url("") == ""


def test_extract_email_attachments_skips_placeholders():
    payload = {
        "file_001": "https://x.test/a.pdf",
        "file_002": "$request.file.2.link$",
        "file_003": "driveFileId",
        "file_004": "",
        "file_021": "https://x.test/ignored.pdf",
        "subject": "Boleto",
    }
    attachments = extract_email_attachments(payload)

    assert [(a["index"], a["field"]) for a in attachments] == [(0, "file_001"), (2, "file_003")]
    assert attachments[1]["url"].endswith("id=driveFileId")


def test_umbler_media_url_lookup_order():
    """Test the nested message, then last message, then root fallbacks."""
    nested = {"Payload": {"Content": {
        "Message": {"File": {"Url": "https://u.test/msg.jpg"}},
        "LastMessage": {"File": {"Url": "https://u.test/last.jpg"}},
    }}}
    assert umbler_media_url(nested) == "https://u.test/msg.jpg"

    last_only = {"Payload": {"Content": {"LastMessage": {"File": {"Url": "https://u.test/last.jpg"}}}}}
    assert umbler_media_url(last_only) == "https://u.test/last.jpg"

    root = {"Message": {"File": None}, "LastMessage": {"File": {"Url": "https://u.test/root.jpg"}}}
    assert umbler_media_url(root) == "https://u.test/root.jpg"

    wrapped = {"body": {"Payload": {"Content": {"Message": {"File": {"Url": "https://u.test/b.ogg"}}}}}}
    assert umbler_media_url(wrapped) == "https://u.test/b.ogg"

    assert umbler_media_url({"Payload": {"Content": {"Message": {"Text": "oi"}}}}) == ""


def test_resolve_media_url_prefers_item_url():
    item = make_item("a", media_url="https://files.test/a")
    assert resolve_media_url(item, None) == "https://files.test/a"


def test_resolve_media_url_from_email_attachment_index():
    item = make_item("a", media_url="", webhook_source="email", attachment_index=2)
    payload = {"file_001": "https://x.test/1.pdf", "file_003": "https://x.test/3.pdf"}
    assert resolve_media_url(item, payload) == "https://x.test/3.pdf"


def test_resolve_media_url_missing_webhook():
    item = make_item("a", media_url=None)
    with pytest.raises(UnresolvableSourceError, match="not found"):
        resolve_media_url(item, None)


def test_resolve_media_url_webhook_without_file():
    item = make_item("a", media_url=None, webhook_source="email", attachment_index=5)
    with pytest.raises(UnresolvableSourceError):
        resolve_media_url(item, {"file_001": "https://x.test/1.pdf"})
