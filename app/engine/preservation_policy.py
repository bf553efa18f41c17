"""
Preservation policy: decide whether to keep the uncompressed original.

The original is kept when compression was very effective (the payload is
highly redundant, so an uncompressed copy is worth having for direct AI
use) or when the MIME type is on the critical list.
"""
import logging
from typing import Iterable, Optional

from app.core.config import settings
from app.engine.compression_engine import normalize_mime_type

logger = logging.getLogger(__name__)


class PreservationPolicy:
    """Pure decision over (mime_type, compression_ratio)."""

    def __init__(
        self,
        ratio_threshold: Optional[float] = None,
        critical_mime_types: Optional[Iterable[str]] = None,
    ):
        self.ratio_threshold = (
            settings.preservation_ratio_threshold if ratio_threshold is None else ratio_threshold
        )
        types = settings.critical_mime_types if critical_mime_types is None else critical_mime_types
        self.critical_mime_types = frozenset(normalize_mime_type(t) for t in types)

    def is_critical(self, mime_type: str) -> bool:
        return normalize_mime_type(mime_type) in self.critical_mime_types

    def should_preserve_original(self, mime_type: str, compression_ratio: float) -> bool:
        return compression_ratio > self.ratio_threshold or self.is_critical(mime_type)

    def reason(self, mime_type: str, compression_ratio: float) -> str:
        """Human-readable explanation of the decision, for logs."""
        reasons = []
        if compression_ratio > self.ratio_threshold:
            reasons.append(
                f"compression ratio {compression_ratio:.2f}% exceeds {self.ratio_threshold:g}%"
            )
        if self.is_critical(mime_type):
            reasons.append(f"{normalize_mime_type(mime_type)} is a critical type")
        if not reasons:
            return (
                f"not preserved: ratio {compression_ratio:.2f}% <= {self.ratio_threshold:g}% "
                f"and {normalize_mime_type(mime_type)} is not critical"
            )
        return "preserved: " + "; ".join(reasons)
