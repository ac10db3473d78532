"""
Word documents.

OpenXML (.docx) goes through python-docx. Legacy binary .doc files are read
with olefile: the WordDocument stream's piece table (the Clx in the table
stream) maps character positions to byte ranges that are either cp1252 or
UTF-16LE.
"""
import io
import re
import struct

import olefile
from docx import Document

from media_extractor.extractors.base import Extractor, ExtractionError, ExtractionResult, MediaContext
from media_extractor.logging_conf import logger
from media_extractor.queue.models import MSWORD_MIME, ZIP_MIME, MediaType

ZIP_PLACEHOLDER = "[Arquivo não extraível: arquivo ZIP ({mime})]"

# File Information Block offsets
FIB_FLAGS = 0x000A
FIB_CCP_TEXT = 0x004C
FIB_FC_CLX = 0x01A2
FIB_LCB_CLX = 0x01A6
FLAG_WHICH_TABLE = 0x0200
FLAG_ENCRYPTED = 0x0100
FC_COMPRESSED = 0x40000000

FIELD_CODE_RE = re.compile(r"\x13[^\x13\x14\x15]*\x14?([^\x13\x14\x15]*)\x15")
CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


class DocumentExtractor(Extractor):
    media_type = MediaType.DOCX

    def extract(self, media: MediaContext) -> ExtractionResult:
        if media.mime_type == MSWORD_MIME:
            return ExtractionResult(extract_legacy_doc(media.content), "olefile-doc")

        try:
            text = extract_docx(media.content)
        except Exception as e:
            if media.mime_type == ZIP_MIME:
                logger.info(f"[{media.item.id}] ZIP is not a readable Word document: {e}")
                text = ""
            else:
                raise ExtractionError(f"DOCX extraction failed: {e}") from e

        if media.mime_type == ZIP_MIME and not text:
            return ExtractionResult(ZIP_PLACEHOLDER.format(mime=media.mime_type), "skipped-zip")
        return ExtractionResult(text, "python-docx")


def extract_docx(buffer: bytes) -> str:
    """Paragraph text followed by table cell text."""
    document = Document(io.BytesIO(buffer))
    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append("\t".join(cells))
    return "\n".join(lines).strip()


def extract_legacy_doc(buffer: bytes) -> str:
    """Main document text of a Word 97-2003 file."""
    if not buffer.startswith(olefile.MAGIC):
        raise ExtractionError("Not an OLE2 compound file")

    with olefile.OleFileIO(io.BytesIO(buffer)) as ole:
        if not ole.exists("WordDocument"):
            raise ExtractionError("OLE2 file has no WordDocument stream")
        word = ole.openstream("WordDocument").read()
        if len(word) < FIB_LCB_CLX + 4:
            raise ExtractionError("WordDocument stream too short")

        flags = struct.unpack_from("<H", word, FIB_FLAGS)[0]
        if flags & FLAG_ENCRYPTED:
            raise ExtractionError("Encrypted Word document")

        table_name = "1Table" if flags & FLAG_WHICH_TABLE else "0Table"
        if not ole.exists(table_name):
            raise ExtractionError(f"OLE2 file has no {table_name} stream")
        table = ole.openstream(table_name).read()

    ccp_text = struct.unpack_from("<i", word, FIB_CCP_TEXT)[0]
    fc_clx, lcb_clx = struct.unpack_from("<II", word, FIB_FC_CLX)
    clx = table[fc_clx:fc_clx + lcb_clx]
    return clean_word_text(read_piece_text(word, clx, ccp_text))


def read_piece_text(word_stream: bytes, clx: bytes, ccp_text: int) -> str:
    """Decode the first `ccp_text` characters described by a Clx structure."""
    pos = 0
    while pos < len(clx) and clx[pos] == 0x01:
        # Prc: property modifiers, irrelevant for text
        size = struct.unpack_from("<h", clx, pos + 1)[0]
        pos += 3 + size
    if pos >= len(clx) or clx[pos] != 0x02:
        raise ExtractionError("Piece table not found in Clx")

    lcb = struct.unpack_from("<I", clx, pos + 1)[0]
    plc = clx[pos + 5:pos + 5 + lcb]
    count = (len(plc) - 4) // 12
    if count <= 0:
        raise ExtractionError("Empty piece table")

    cps = struct.unpack_from(f"<{count + 1}I", plc, 0)
    pcd_base = 4 * (count + 1)
    parts = []
    for i in range(count):
        start, end = cps[i], min(cps[i + 1], ccp_text)
        if end <= start:
            break
        length = end - start
        fc = struct.unpack_from("<I", plc, pcd_base + i * 8 + 2)[0]
        if fc & FC_COMPRESSED:
            offset = (fc & ~FC_COMPRESSED) // 2
            parts.append(word_stream[offset:offset + length].decode("cp1252", errors="replace"))
        else:
            parts.append(word_stream[fc:fc + 2 * length].decode("utf-16-le", errors="replace"))
    return "".join(parts)


def clean_word_text(text: str) -> str:
    """Turn Word control characters into plain text."""
    text = FIELD_CODE_RE.sub(r"\1", text)
    text = text.replace("\r", "\n").replace("\x07", "\t").replace("\x0b", "\n").replace("\x0c", "\n")
    text = CONTROL_RE.sub("", text)
    lines = [line.rstrip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
