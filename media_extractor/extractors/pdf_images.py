"""
Locate a raster image inside a PDF without rendering it.

Scanned documents and phone "prints" saved as PDF usually carry one page-size
image and no text layer. Three strategies are tried in order:

1. a JPEG byte stream stored as-is (SOI ... EOI markers in the raw file);
2. image streams declaring /DCTDecode, possibly wrapped in /FlateDecode;
3. raw or Flate-compressed pixel streams (1-bit, 8-bit gray, 8-bit RGB),
   re-encoded as JPEG; the largest one wins so small logos are ignored.
"""
import io
import re
import zlib
from dataclasses import dataclass
from typing import Iterator, List, Optional

from PIL import Image

from media_extractor import settings
from media_extractor.logging_conf import logger

SOI = b"\xff\xd8\xff"
EOI = b"\xff\xd9"

OBJ_RE = re.compile(rb"\d+\s+\d+\s+obj\b(.*?)\bendobj", re.S)
FILTER_RE = re.compile(rb"/Filter\s*(\[[^\]]*\]|/[A-Za-z0-9]+)")
NAME_RE = re.compile(rb"/([A-Za-z0-9]+)")

FLATE_NAMES = {"FlateDecode", "Fl"}
DCT_NAMES = {"DCTDecode", "DCT"}
COLOR_COMPONENTS = {"DeviceGray": 1, "CalGray": 1, "G": 1, "DeviceRGB": 3, "CalRGB": 3, "RGB": 3}
JPEG_QUALITY = 90


@dataclass
class EmbeddedImage:
    data: bytes  # JPEG bytes
    source: str  # "jpeg-stream", "dct-stream" or "raw-pixels"
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class PdfStream:
    dictionary: bytes
    data: bytes

    def int_entry(self, key: str) -> Optional[int]:
        # "/Length 12 0 R" is an indirect reference, not a value
        match = re.search(rb"/" + key.encode() + rb"\s+(\d+)\b(?!\s+\d+\s+R)", self.dictionary)
        return int(match.group(1)) if match else None

    def name_entry(self, key: str) -> Optional[str]:
        match = re.search(rb"/" + key.encode() + rb"\s*/([A-Za-z0-9]+)", self.dictionary)
        return match.group(1).decode() if match else None

    @property
    def filters(self) -> List[str]:
        match = FILTER_RE.search(self.dictionary)
        if not match:
            return []
        return [name.decode() for name in NAME_RE.findall(match.group(1))]

    @property
    def is_image(self) -> bool:
        return re.search(rb"/Subtype\s*/Image\b", self.dictionary) is not None

    @property
    def is_mask(self) -> bool:
        return re.search(rb"/ImageMask\s+true", self.dictionary) is not None


def iter_streams(buffer: bytes) -> Iterator[PdfStream]:
    """Yield every `N G obj << ... >> stream ... endstream` in the file."""
    for match in OBJ_RE.finditer(buffer):
        body = match.group(1)
        keyword = body.find(b"stream")
        if keyword == -1:
            continue
        end = body.rfind(b"endstream")
        if end <= keyword:
            continue

        start = keyword + len(b"stream")
        if body[start:start + 2] == b"\r\n":
            start += 2
        elif body[start:start + 1] in (b"\n", b"\r"):
            start += 1

        stream = PdfStream(dictionary=body[:keyword], data=body[start:end])
        length = stream.int_entry("Length")
        if length is not None and length <= len(stream.data):
            stream.data = stream.data[:length]
        else:
            stream.data = stream.data.rstrip(b"\r\n")
        yield stream


def _jpeg_size(data: bytes) -> Optional[tuple]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format == "JPEG":
                return img.size
    except (OSError, ValueError, SyntaxError):
        pass
    return None


def find_direct_jpeg(buffer: bytes) -> Optional[EmbeddedImage]:
    """Largest SOI..EOI run that parses as a JPEG."""
    best = None
    best_size = None
    pos = buffer.find(SOI)
    while pos != -1:
        limit = buffer.find(b"endstream", pos)
        if limit == -1:
            limit = len(buffer)
        eoi = buffer.rfind(EOI, pos, limit)
        if eoi != -1:
            data = buffer[pos:eoi + 2]
            if best is None or len(data) > len(best):
                size = _jpeg_size(data)
                if size:
                    best, best_size = data, size
        pos = buffer.find(SOI, max(limit, pos + len(SOI)))

    if best is None:
        return None
    return EmbeddedImage(best, "jpeg-stream", *best_size)


def find_dct_stream(buffer: bytes) -> Optional[EmbeddedImage]:
    """Largest /DCTDecode stream, inflating it first when Flate wraps it."""
    best = None
    for stream in iter_streams(buffer):
        filters = stream.filters
        if not DCT_NAMES.intersection(filters):
            continue

        data = stream.data
        if FLATE_NAMES.intersection(filters[:1]):
            try:
                data = zlib.decompress(data)
            except zlib.error as e:
                logger.debug(f"Skipping undecodable Flate+DCT stream: {e}")
                continue

        if not data.startswith(SOI):
            continue
        size = _jpeg_size(data)
        if size and (best is None or len(data) > len(best.data)):
            best = EmbeddedImage(data, "dct-stream", *size)
    return best


def undo_png_predictor(data: bytes, columns: int, colors: int, bits: int) -> bytes:
    """Reverse PNG row filters (Predictor >= 10) applied before Flate."""
    bpp = max(1, colors * bits // 8)
    row_len = (columns * colors * bits + 7) // 8
    step = row_len + 1
    prev = bytearray(row_len)
    out = bytearray()

    for offset in range(0, len(data) - step + 1, step):
        kind = data[offset]
        row = bytearray(data[offset + 1:offset + step])
        for i in range(row_len):
            left = row[i - bpp] if i >= bpp else 0
            up = prev[i]
            if kind == 1:
                row[i] = (row[i] + left) & 0xFF
            elif kind == 2:
                row[i] = (row[i] + up) & 0xFF
            elif kind == 3:
                row[i] = (row[i] + ((left + up) >> 1)) & 0xFF
            elif kind == 4:
                up_left = prev[i - bpp] if i >= bpp else 0
                p = left + up - up_left
                pa, pb, pc = abs(p - left), abs(p - up), abs(p - up_left)
                if pa <= pb and pa <= pc:
                    predictor = left
                elif pb <= pc:
                    predictor = up
                else:
                    predictor = up_left
                row[i] = (row[i] + predictor) & 0xFF
        out += row
        prev = row
    return bytes(out)


def _decode_pixels(stream: PdfStream, width: int, height: int) -> Optional[Image.Image]:
    bits = stream.int_entry("BitsPerComponent") or 8
    data = stream.data
    if FLATE_NAMES.intersection(stream.filters):
        data = zlib.decompress(data)

    components = COLOR_COMPONENTS.get(stream.name_entry("ColorSpace") or "")
    if bits == 1:
        components = 1
    elif components is None:
        # ICC-based or indirect color spaces: infer from the pixel count
        guess = len(data) // (width * height) if width * height else 0
        components = guess if guess in (1, 3) else None
    if components is None or bits not in (1, 8):
        return None

    predictor = stream.int_entry("Predictor") or 1
    if predictor >= 10:
        columns = stream.int_entry("Columns") or width
        data = undo_png_predictor(data, columns, components, bits)

    if bits == 1:
        mode, row_bytes = "1", (width + 7) // 8
    else:
        mode, row_bytes = ("L", width) if components == 1 else ("RGB", width * 3)

    expected = row_bytes * height
    if len(data) < expected:
        return None
    return Image.frombytes(mode, (width, height), data[:expected])


def find_raw_pixels(buffer: bytes) -> Optional[EmbeddedImage]:
    """Largest uncompressed or Flate image XObject, re-encoded as JPEG."""
    candidates = []
    for stream in iter_streams(buffer):
        if not stream.is_image or stream.is_mask:
            continue
        if not set(stream.filters) <= FLATE_NAMES:
            continue
        width, height = stream.int_entry("Width"), stream.int_entry("Height")
        if width and height:
            candidates.append((width * height, width, height, stream))

    candidates.sort(key=lambda c: c[0], reverse=True)
    for _, width, height, stream in candidates:
        try:
            image = _decode_pixels(stream, width, height)
        except (zlib.error, ValueError) as e:
            logger.debug(f"Skipping undecodable {width}x{height} image stream: {e}")
            continue
        if image is None:
            continue
        if image.mode == "1":
            image = image.convert("L")
        out = io.BytesIO()
        image.save(out, format="JPEG", quality=JPEG_QUALITY)
        return EmbeddedImage(out.getvalue(), "raw-pixels", width, height)
    return None


def find_embedded_image(buffer: bytes, min_bytes: int = None) -> Optional[EmbeddedImage]:
    """First strategy yielding a JPEG of at least `min_bytes`, or None."""
    min_bytes = settings.PDF_IMAGE_MIN_BYTES if min_bytes is None else min_bytes
    for finder in (find_direct_jpeg, find_dct_stream, find_raw_pixels):
        image = finder(buffer)
        if image is None:
            continue
        if len(image.data) < min_bytes:
            logger.debug(f"Embedded {image.source} image too small: {len(image.data)} bytes")
            continue
        logger.info(f"Found embedded {image.source} image "
                    f"({image.width}x{image.height}, {len(image.data)} bytes)")
        return image
    return None
