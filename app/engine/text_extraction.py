"""
Text extraction for compressed uploads.

Extractors turn raw file bytes into plain text for enrichment. They are
best-effort: any failure is logged and reported as ``None`` so that a
codec never fails because its text could not be read.

- PdfTextExtractor: PyPDF2 page text, falling back to a printable-run
  heuristic over the raw bytes
- ImageTextExtractor: Gemini vision OCR via google-genai
"""
import io
import logging
import re
from typing import Optional, Protocol

from google import genai
from google.genai import types
from PIL import Image
from PyPDF2 import PdfReader

from app.core.config import settings

logger = logging.getLogger(__name__)


class TextExtractor(Protocol):
    """Pluggable text extractor used by the compression codecs."""

    def extract(self, data: bytes, mime_type: str) -> Optional[str]:
        """Return extracted text, or None when nothing could be read."""
        ...


class PdfTextExtractor:
    """
    Extract text from PDF bytes.

    PyPDF2 is tried first. Scanned or malformed PDFs frequently yield no
    page text, in which case runs of at least ten letters/whitespace are
    pulled out of the raw byte stream and capped at ``max_heuristic_chars``.
    """

    PRINTABLE_RUN = re.compile(r"[a-zA-Z\s]{10,}")

    def __init__(self, max_heuristic_chars: int = 5000):
        self.max_heuristic_chars = max_heuristic_chars

    def extract(self, data: bytes, mime_type: str = "application/pdf") -> Optional[str]:
        text = self._extract_with_reader(data)
        if not text:
            text = self._extract_heuristic(data)
        return text or None

    def _extract_with_reader(self, data: bytes) -> Optional[str]:
        try:
            reader = PdfReader(io.BytesIO(data))
            text_parts = []
            for page in reader.pages:
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(page_text)

            full_text = "\n\n".join(text_parts)
            full_text = re.sub(r"\n{3,}", "\n\n", full_text)
            full_text = re.sub(r" {2,}", " ", full_text).strip()

            logger.debug(f"PyPDF2 extracted {len(full_text)} chars from {len(reader.pages)} pages")
            return full_text or None
        except Exception as e:
            logger.warning(f"PDF reader failed, using heuristic extraction: {e}")
            return None

    def _extract_heuristic(self, data: bytes) -> Optional[str]:
        try:
            raw = data.decode("latin-1")
            matches = self.PRINTABLE_RUN.findall(raw)
            text = " ".join(matches)[:self.max_heuristic_chars].strip()
            return text or None
        except Exception as e:
            logger.warning(f"Heuristic PDF text extraction failed: {e}")
            return None


class ImageTextExtractor:
    """
    OCR for uploaded images using Gemini vision.

    Disabled (returns None) when no Google API key is configured or
    ``image_ocr_enabled`` is off. Formats Gemini does not accept are
    converted to PNG with PIL first.
    """

    OCR_PROMPT = (
        "Extract all readable text from this image. "
        "Return only the text, preserving line breaks. "
        "If the image contains no text, return an empty response."
    )

    SUPPORTED_MIME_TYPES = frozenset({
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/heic",
        "image/heif",
    })

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.model_name = model or settings.google_model
        self.api_key = api_key or settings.google_api_key
        self.enabled = settings.image_ocr_enabled if enabled is None else enabled
        self._client = None

    @property
    def client(self) -> genai.Client:
        """Lazy initialization of Gemini client"""
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def available(self) -> bool:
        return bool(self.enabled and self.api_key)

    def extract(self, data: bytes, mime_type: str) -> Optional[str]:
        if not self.available:
            return None

        try:
            image_bytes, image_mime = self._prepare_image(data, mime_type)
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Content(
                        parts=[
                            types.Part.from_text(text=self.OCR_PROMPT),
                            types.Part.from_bytes(data=image_bytes, mime_type=image_mime),
                        ]
                    )
                ],
            )
            text = (response.text or "").strip()
            logger.info(f"OCR extracted {len(text)} chars from {mime_type} image")
            return text or None
        except Exception as e:
            logger.warning(f"Image OCR failed: {e}")
            return None

    def _prepare_image(self, data: bytes, mime_type: str) -> tuple[bytes, str]:
        if mime_type in self.SUPPORTED_MIME_TYPES:
            return data, mime_type

        image = Image.open(io.BytesIO(data))
        if image.mode not in ("RGB", "RGBA", "L"):
            image = image.convert("RGBA")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue(), "image/png"
