"""Magic-byte type detection and the skip policy for non-extractable payloads."""
import io
import re
import zipfile
from dataclasses import dataclass
from typing import Optional

from media_extractor import settings
from media_extractor.queue.models import (
    DOCX_MIME,
    MSWORD_MIME,
    ZIP_MIME,
    MediaType,
    classify_media_type,
)

GENERIC_MIME_TYPES = {
    "",
    "application/octet-stream",
    "binary/octet-stream",
    "application/unknown",
    "application/binary",
    "application/x-download",
    "application/force-download",
}

RAR_MIME = "application/vnd.rar"
EMAIL_MIME = "message/rfc822"
HTML_MIME = "text/html"
HEIC_MIME = "image/heic"

# Resolved MIME -> (skip method suffix, human label)
SKIP_MIME_TYPES = {
    RAR_MIME: ("rar", "arquivo RAR"),
    "application/x-rar-compressed": ("rar", "arquivo RAR"),
    EMAIL_MIME: ("email", "e-mail bruto"),
    HTML_MIME: ("html", "página HTML"),
    HEIC_MIME: ("heic", "imagem HEIC"),
    "image/heif": ("heic", "imagem HEIF"),
}

HEIC_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1"}
AUDIO_MP4_BRANDS = {b"M4A ", b"M4B ", b"F4A "}

EMAIL_HEADER_RE = re.compile(
    rb"^(Received|Return-Path|Delivered-To|MIME-Version|Message-ID|X-[\w-]+|From|To|Subject|Date):",
    re.IGNORECASE,
)
HTML_RE = re.compile(rb"^\s*(<!doctype\s+html|<html|<head|<body)", re.IGNORECASE)


def normalize_mime(value: Optional[str]) -> str:
    """Lower-case a content type and drop its parameters."""
    return (value or "").split(";")[0].strip().lower()


def is_generic(mime_type: Optional[str]) -> bool:
    return normalize_mime(mime_type) in GENERIC_MIME_TYPES


def _zip_is_word_document(buffer: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            return "word/document.xml" in archive.namelist()
    except (zipfile.BadZipFile, OSError, ValueError):
        return False


def sniff_mime(buffer: bytes, content_type: str = "", file_name: str = "",
               declared_mime: str = "") -> Optional[str]:
    """
    Identify a payload from its leading bytes.

    Returns a MIME type, or None when no signature matches (the declared type
    is then kept).
    """
    if not buffer or len(buffer) < 4:
        return None
    head = buffer[:16]

    if head.startswith(b"%PDF"):
        return "application/pdf"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith(b"RIFF") and head[8:12] == b"WAVE":
        return "audio/wav"
    if head.startswith(b"PK\x03\x04"):
        return DOCX_MIME if _zip_is_word_document(buffer) else ZIP_MIME
    if head.startswith(b"\xd0\xcf\x11\xe0"):
        # OLE2 is shared by .doc, .msg and .xls; only claim Word
        ct = normalize_mime(content_type)
        fn = (file_name or "").lower()
        if "ms-outlook" in ct or fn.endswith(".msg") or "ms-excel" in ct or fn.endswith(".xls"):
            return None
        return MSWORD_MIME
    if head.startswith(b"Rar!\x1a\x07"):
        return RAR_MIME
    if head.startswith(b"ID3") or (head[0] == 0xFF and head[1] in (0xFB, 0xF3, 0xF2)):
        return "audio/mpeg"
    if head.startswith(b"OggS"):
        return "audio/ogg"
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in HEIC_BRANDS:
            return HEIC_MIME
        if brand in AUDIO_MP4_BRANDS:
            return "audio/mp4"
        if normalize_mime(declared_mime or content_type).startswith("audio/"):
            return "audio/mp4"
        return "video/mp4"
    if HTML_RE.match(buffer[:512]):
        return HTML_MIME
    if EMAIL_HEADER_RE.match(buffer[:256]):
        return EMAIL_MIME
    return None


@dataclass(frozen=True)
class ResolvedType:
    mime_type: str
    media_type: MediaType
    sniffed: bool


def resolve_type(buffer: bytes, declared_mime: Optional[str], declared_media_type: MediaType,
                 content_type: str = "", file_name: str = "") -> ResolvedType:
    """
    Reconcile the declared type with what the bytes say.

    Precedence: magic bytes, then the declared MIME, then the HTTP content
    type, then the declared category.
    """
    sniffed = sniff_mime(buffer, content_type=content_type, file_name=file_name,
                         declared_mime=declared_mime or "")
    if sniffed:
        return ResolvedType(sniffed, classify_media_type(sniffed), True)

    for candidate in (declared_mime, content_type):
        if not is_generic(candidate):
            mime = normalize_mime(candidate)
            return ResolvedType(mime, classify_media_type(mime), False)

    return ResolvedType(normalize_mime(declared_mime), declared_media_type, False)


@dataclass(frozen=True)
class SkipDecision:
    method: str
    placeholder: str


def skip_decision(buffer: bytes, resolved: ResolvedType,
                  min_bytes: int = None) -> Optional[SkipDecision]:
    """Return why extraction must be bypassed, or None when it should run."""
    min_bytes = settings.MIN_EXTRACTABLE_BYTES if min_bytes is None else min_bytes

    skipped = SKIP_MIME_TYPES.get(resolved.mime_type)
    if skipped:
        suffix, label = skipped
        return SkipDecision(
            method=f"skipped-{suffix}",
            placeholder=f"[Arquivo não extraível: {label} ({resolved.mime_type})]",
        )

    if len(buffer) < min_bytes:
        return SkipDecision(
            method="skipped-too-small",
            placeholder=f"[Arquivo muito pequeno: {len(buffer)} bytes ({resolved.mime_type or 'tipo desconhecido'})]",
        )

    return None
