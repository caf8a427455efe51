"""
Image Pipeline

Validates item image uploads, re-encodes them for storage and fetches stored
images back for embedding into quotation PDFs.

Compression is quality-only by default: pixel dimensions are kept and the
image is re-encoded as JPEG. With ``image_preserve_dimensions`` turned off the
fallback path also caps width and height at ``image_fallback_max_dimension``.
"""
import asyncio
import io
import logging
import struct
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from PIL import Image

from laminates.core.config import Settings, get_settings
from laminates.core.constants import ALLOWED_IMAGE_MIME_TYPES
from laminates.core.errors import ImageTooLargeError, InvalidImageError
from laminates.services.blob_store import BlobDeletionReport

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = (800, 600)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

# JPEG start-of-frame markers carrying dimensions (DHT, JPG and DAC excluded)
_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


@dataclass(frozen=True)
class StoredImageRef:
    path: str
    content_type: str
    size_bytes: int
    width: int
    height: int
    compressed: bool = False


@dataclass(frozen=True)
class EmbeddedImage:
    """Encoded image bytes plus header-derived pixel dimensions"""
    data: bytes
    pixel_width: int
    pixel_height: int
    mime_type: str

    @property
    def aspect_ratio(self) -> float:
        if self.pixel_height <= 0:
            return 1.0
        return self.pixel_width / self.pixel_height


def sniff_mime_type(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _jpeg_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    i = 2
    length = len(data)
    while i + 3 < length:
        if data[i] != 0xFF:
            i += 1
            continue
        marker = data[i + 1]
        if marker == 0xFF:
            # fill byte
            i += 1
            continue
        if marker == 0xD8 or marker == 0x01 or 0xD0 <= marker <= 0xD7:
            i += 2
            continue
        if marker in (0xD9, 0xDA):
            return None
        segment_length = struct.unpack(">H", data[i + 2:i + 4])[0]
        if marker in _SOF_MARKERS:
            if i + 9 > length:
                return None
            height, width = struct.unpack(">HH", data[i + 5:i + 9])
            return width, height
        i += 2 + segment_length
    return None


def _png_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    if len(data) < 24 or data[12:16] != b"IHDR":
        return None
    return struct.unpack(">II", data[16:24])


def _webp_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    if len(data) < 30:
        return None
    chunk = data[12:16]
    if chunk == b"VP8X":
        width = int.from_bytes(data[24:27], "little") + 1
        height = int.from_bytes(data[27:30], "little") + 1
        return width, height
    if chunk == b"VP8 ":
        if data[23:26] != b"\x9d\x01\x2a":
            return None
        width, height = struct.unpack("<HH", data[26:30])
        return width & 0x3FFF, height & 0x3FFF
    if chunk == b"VP8L":
        if data[20] != 0x2F:
            return None
        bits = int.from_bytes(data[21:25], "little")
        return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1
    return None


def probe_dimensions(data: bytes) -> Tuple[int, int]:
    """
    Read pixel dimensions from the container header without decoding pixels.

    Understands JPEG, PNG and WebP; anything unrecognised or truncated yields
    DEFAULT_DIMENSIONS so embedding can continue with an approximate aspect.
    """
    mime_type = sniff_mime_type(data)
    try:
        if mime_type == "image/png":
            dimensions = _png_dimensions(data)
        elif mime_type == "image/jpeg":
            dimensions = _jpeg_dimensions(data)
        elif mime_type == "image/webp":
            dimensions = _webp_dimensions(data)
        else:
            dimensions = None
    except (struct.error, IndexError):
        dimensions = None

    if not dimensions or dimensions[0] <= 0 or dimensions[1] <= 0:
        return DEFAULT_DIMENSIONS
    return int(dimensions[0]), int(dimensions[1])


def _decode(data: bytes) -> Tuple[int, int]:
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.size


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def compress_image(data: bytes, quality: int, preserve_dimensions: bool = True,
                   max_dimension: int = 1200) -> Tuple[bytes, Tuple[int, int]]:
    """Re-encode as JPEG; returns the new bytes and their pixel size"""
    with Image.open(io.BytesIO(data)) as source:
        image = _to_rgb(source)
        if not preserve_dimensions:
            # thumbnail() keeps aspect ratio and never enlarges
            image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue(), image.size


class ImagePipeline:
    """Upload, fetch and discard item images through a blob store"""

    def __init__(self, blob_store, settings: Optional[Settings] = None):
        self.blob_store = blob_store
        self.settings = settings or get_settings()

    def validate(self, data: bytes, declared_mime_type: Optional[str]) -> str:
        """Check type and size; returns the normalised mime type"""
        mime_type = (declared_mime_type or "").split(";")[0].strip().lower()
        if mime_type not in ALLOWED_IMAGE_MIME_TYPES:
            raise InvalidImageError(
                f"Unsupported image type: {declared_mime_type or 'unknown'}",
                details={"mime_type": declared_mime_type, "allowed": sorted(ALLOWED_IMAGE_MIME_TYPES)},
            )
        limit = self.settings.image_max_file_size_bytes
        if len(data) > limit:
            raise ImageTooLargeError(
                f"Image exceeds maximum size of {limit} bytes",
                details={"size": len(data), "limit": limit},
            )
        if not data:
            raise InvalidImageError("Empty image upload", details={"mime_type": mime_type})
        return mime_type

    async def ingest(self, raw_bytes: bytes, declared_mime_type: Optional[str], scope: str) -> StoredImageRef:
        """
        Validate, optionally compress and store one upload.

        Raises:
            InvalidImageError: type not allow-listed or bytes not decodable
            ImageTooLargeError: upload larger than the configured maximum
            StorageFailedError: blob store rejected the upload
        """
        mime_type = self.validate(raw_bytes, declared_mime_type)

        try:
            width, height = await asyncio.to_thread(_decode, raw_bytes)
        except Exception as e:
            raise InvalidImageError(
                f"Image could not be decoded: {e}",
                details={"mime_type": mime_type},
            )

        data, content_type, compressed = raw_bytes, mime_type, False
        if mime_type == "image/jpg":
            content_type = "image/jpeg"

        if self.settings.image_compression_enabled and len(raw_bytes) >= self.settings.image_compression_min_bytes:
            try:
                encoded, size = await asyncio.to_thread(
                    compress_image,
                    raw_bytes,
                    self.settings.image_compression_quality,
                    self.settings.image_preserve_dimensions,
                    self.settings.image_fallback_max_dimension,
                )
                if len(encoded) < len(raw_bytes):
                    data, content_type, compressed = encoded, "image/jpeg", True
                    width, height = size
                    logger.debug(f"Compressed image {len(raw_bytes)} -> {len(encoded)} bytes")
            except Exception as e:
                logger.warning(f"Image compression failed, storing original bytes: {e}")

        path = await self.blob_store.put(data, content_type, scope, _EXTENSIONS[content_type])
        return StoredImageRef(
            path=path,
            content_type=content_type,
            size_bytes=len(data),
            width=width,
            height=height,
            compressed=compressed,
        )

    async def fetch_for_embedding(self, path: str) -> EmbeddedImage:
        data = await self.blob_store.get(path)
        width, height = probe_dimensions(data)
        return EmbeddedImage(
            data=data,
            pixel_width=width,
            pixel_height=height,
            mime_type=sniff_mime_type(data) or "image/jpeg",
        )

    async def discard(self, paths: Iterable[Optional[str]], context: str) -> BlobDeletionReport:
        """Best-effort delete of stored blobs; failures are logged and returned, never raised"""
        report = await self.blob_store.delete_many(paths)
        report.log_failures(context)
        return report
