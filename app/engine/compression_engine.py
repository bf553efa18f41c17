"""
Compression Engine for knowledge base uploads.

Selects a codec by MIME type, compresses the payload losslessly and
extracts text where the format allows it. Every codec shares the same
deterministic gzip compressor and owns exactly one compression type tag,
which is what ``decompress`` dispatches on later.

| MIME            | Codec       | Tag                  |
|-----------------|-------------|----------------------|
| application/pdf | PdfCodec    | pdf-zlib-lossless    |
| image/*         | ImageCodec  | image-zlib           |
| video/*         | MediaCodec  | video-zlib           |
| audio/*         | MediaCodec  | audio-zlib           |
| text/*          | TextCodec   | text-zlib-lossless   |
| anything else   | GenericCodec| generic-zlib         |
"""
import gzip
import logging
import zlib
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.config import settings
from app.core.exceptions import CompressionError, DecompressionError
from app.engine.text_extraction import ImageTextExtractor, PdfTextExtractor, TextExtractor
from app.models.knowledge_item import compute_compression_ratio

logger = logging.getLogger(__name__)


PDF_TAG = "pdf-zlib-lossless"
IMAGE_TAG = "image-zlib"
VIDEO_TAG = "video-zlib"
AUDIO_TAG = "audio-zlib"
TEXT_TAG = "text-zlib-lossless"
GENERIC_TAG = "generic-zlib"

KNOWN_TAGS = frozenset({PDF_TAG, IMAGE_TAG, VIDEO_TAG, AUDIO_TAG, TEXT_TAG, GENERIC_TAG})

DEFAULT_IMAGE_QUALITY = 85


def normalize_mime_type(mime_type: str) -> str:
    """Lowercase and drop parameters, e.g. ``Text/Plain; charset=utf-8`` -> ``text/plain``."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def gzip_compress(data: bytes, level: int) -> bytes:
    # mtime=0 keeps the output identical for identical input
    return gzip.compress(data, compresslevel=level, mtime=0)


@dataclass
class CompressionOptions:
    """Caller options for a single compression. Only the image codec reads them."""
    image_quality: int = DEFAULT_IMAGE_QUALITY


@dataclass
class CompressionMetadata:
    compression_type: str
    quality: Optional[int] = None
    preserved_for_ai: bool = False


@dataclass
class CompressionResult:
    """Output of one compression run."""
    compressed_bytes: bytes
    original_size: int
    compressed_size: int
    metadata: CompressionMetadata
    extracted_text: Optional[str] = None

    @property
    def compression_ratio(self) -> float:
        return compute_compression_ratio(self.original_size, self.compressed_size)

    @property
    def compression_type(self) -> str:
        return self.metadata.compression_type


class Codec:
    """
    Base codec: gzip the payload, optionally extract text.

    Subclasses set ``tag`` and ``preserved_for_ai`` and override
    ``matches`` and ``extract_text``.
    """

    tag: str = GENERIC_TAG
    preserved_for_ai: bool = False

    def __init__(self, level: int = 9):
        self.level = level

    def matches(self, mime_type: str) -> bool:
        return False

    def extract_text(self, data: bytes, mime_type: str) -> Optional[str]:
        return None

    def quality(self, options: CompressionOptions) -> Optional[int]:
        return None

    def compress(self, data: bytes, mime_type: str, options: CompressionOptions) -> CompressionResult:
        compressed = gzip_compress(data, self.level)
        return CompressionResult(
            compressed_bytes=compressed,
            original_size=len(data),
            compressed_size=len(compressed),
            extracted_text=self._safe_extract(data, mime_type),
            metadata=CompressionMetadata(
                compression_type=self.tag,
                quality=self.quality(options),
                preserved_for_ai=self.preserved_for_ai,
            ),
        )

    def decompress(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise DecompressionError(f"Corrupt {self.tag} payload: {e}") from e

    def _safe_extract(self, data: bytes, mime_type: str) -> Optional[str]:
        try:
            return self.extract_text(data, mime_type)
        except Exception as e:
            logger.warning(f"Text extraction failed for {self.tag}: {e}")
            return None


class PdfCodec(Codec):
    tag = PDF_TAG
    preserved_for_ai = True

    def __init__(self, level: int = 9, extractor: Optional[TextExtractor] = None):
        super().__init__(level)
        self.extractor = extractor or PdfTextExtractor()

    def matches(self, mime_type: str) -> bool:
        return mime_type == "application/pdf"

    def extract_text(self, data: bytes, mime_type: str) -> Optional[str]:
        return self.extractor.extract(data, mime_type)


class ImageCodec(Codec):
    tag = IMAGE_TAG
    preserved_for_ai = True

    def __init__(self, level: int = 9, extractor: Optional[TextExtractor] = None):
        super().__init__(level)
        self.extractor = extractor or ImageTextExtractor()

    def matches(self, mime_type: str) -> bool:
        return mime_type.startswith("image/")

    def quality(self, options: CompressionOptions) -> Optional[int]:
        return options.image_quality

    def extract_text(self, data: bytes, mime_type: str) -> Optional[str]:
        return self.extractor.extract(data, mime_type)


class MediaCodec(Codec):
    """Video or audio. One instance per media kind so each owns one tag."""

    def __init__(self, kind: str, level: int = 9):
        if kind not in ("video", "audio"):
            raise ValueError(f"Unsupported media kind: {kind}")
        super().__init__(level)
        self.kind = kind
        self.tag = VIDEO_TAG if kind == "video" else AUDIO_TAG

    def matches(self, mime_type: str) -> bool:
        return mime_type.startswith(f"{self.kind}/")


class TextCodec(Codec):
    tag = TEXT_TAG
    preserved_for_ai = True

    def matches(self, mime_type: str) -> bool:
        return mime_type.startswith("text/")

    def extract_text(self, data: bytes, mime_type: str) -> Optional[str]:
        return data.decode("utf-8", errors="replace")


class GenericCodec(Codec):
    tag = GENERIC_TAG

    def matches(self, mime_type: str) -> bool:
        return True


class CompressionEngine:
    """
    Codec dispatch plus fallback.

    If the selected codec raises, the generic codec is re-run on the same
    bytes. Only a failure of the generic codec surfaces as CompressionError.
    """

    def __init__(
        self,
        codecs: Optional[List[Codec]] = None,
        level: Optional[int] = None,
        strict_decompression: Optional[bool] = None,
        pdf_extractor: Optional[TextExtractor] = None,
        image_extractor: Optional[TextExtractor] = None,
    ):
        self.level = level or settings.compression_level
        self.strict_decompression = (
            settings.strict_decompression if strict_decompression is None else strict_decompression
        )
        self.generic = GenericCodec(self.level)
        self.codecs: List[Codec] = codecs if codecs is not None else [
            PdfCodec(self.level, extractor=pdf_extractor),
            ImageCodec(self.level, extractor=image_extractor),
            MediaCodec("video", self.level),
            MediaCodec("audio", self.level),
            TextCodec(self.level),
        ]
        self._by_tag: Dict[str, Codec] = {codec.tag: codec for codec in self.codecs}
        self._by_tag[self.generic.tag] = self.generic

    def select_codec(self, mime_type: str) -> Codec:
        normalized = normalize_mime_type(mime_type)
        for codec in self.codecs:
            if codec.matches(normalized):
                return codec
        return self.generic

    def compress(
        self,
        data: bytes,
        mime_type: str,
        file_name: str = "",
        options: Optional[CompressionOptions] = None,
    ) -> CompressionResult:
        """
        Compress ``data`` with the codec for ``mime_type``.

        Raises:
            CompressionError: if both the selected and the generic codec fail
        """
        options = options or CompressionOptions()
        codec = self.select_codec(mime_type)

        try:
            result = codec.compress(data, mime_type, options)
        except Exception as e:
            if codec is self.generic:
                raise CompressionError(f"Generic compression failed for {file_name}: {e}") from e

            error = CompressionError(f"{codec.tag} failed for {file_name}: {e}")
            logger.warning(f"{error}; falling back to {GENERIC_TAG}")
            try:
                result = self.generic.compress(data, mime_type, options)
            except Exception as fallback_error:
                raise CompressionError(
                    f"Generic compression failed for {file_name}: {fallback_error}"
                ) from fallback_error

        logger.info(
            f"Compressed {file_name or 'upload'} ({mime_type}) with {result.compression_type}: "
            f"{result.original_size} -> {result.compressed_size} bytes "
            f"({result.compression_ratio:.2f}%)"
        )
        return result

    def decompress(self, data: bytes, compression_type: str) -> bytes:
        """
        Restore the original bytes for a stored blob.

        Unknown tags return ``data`` unchanged (with a warning) unless
        strict decompression is enabled.

        Raises:
            DecompressionError: corrupt data under a known tag, or an
                unknown tag in strict mode
        """
        codec = self._by_tag.get(compression_type)
        if codec is None:
            if self.strict_decompression:
                raise DecompressionError(f"Unknown compression type: {compression_type}")
            logger.warning(f"Unknown compression type {compression_type!r}, returning data unchanged")
            return data
        return codec.decompress(data)
