"""
Knowledge Item models.

KnowledgeItem is the persisted unit of ingested content: one uploaded
file, where its blobs live, how it was compressed, and what enrichment
derived from it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)"""
    return datetime.now(timezone.utc)


def compute_compression_ratio(file_size: int, compressed_size: int) -> float:
    """
    Percentage reduction achieved by compression.

    May be zero or negative when compression did not shrink the file.
    An empty file has no meaningful ratio and reports 0.
    """
    if file_size <= 0:
        return 0.0
    return (file_size - compressed_size) / file_size * 100


class ProcessingStatus(str, Enum):
    """Enrichment lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Terminal -> processing only happens through regeneration
ALLOWED_STATUS_TRANSITIONS: Dict[ProcessingStatus, frozenset] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset({
        ProcessingStatus.PROCESSING,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.COMPLETED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PROCESSING}),
}


def is_valid_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return ProcessingStatus(target) in ALLOWED_STATUS_TRANSITIONS[ProcessingStatus(current)]


# Fields set at ingestion that no later update may touch
IMMUTABLE_FIELDS = frozenset({
    "id",
    "owner_id",
    "file_name",
    "mime_type",
    "file_size",
    "compressed_size",
    "file_path",
    "original_file_path",
    "compression_type",
    "compression_ratio",
    "quality",
    "preserved_for_ai",
    "created_at",
})

ENRICHMENT_FIELDS = ("summary", "key_points", "ai_analysis")


class UploadMetadata(BaseModel):
    """Caller-supplied fields that accompany an uploaded file."""
    category_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    custom_category_type: Optional[str] = None
    # Free-form (subject, tags, difficulty_level, ...); stored as given
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("category_id", "title")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class KnowledgeItem(BaseModel):
    """
    Persisted knowledge item.

    ``compression_ratio`` is derived from the stored sizes and cannot be
    set independently.
    """
    id: str
    owner_id: str
    category_id: str
    custom_category_type: Optional[str] = None
    title: str
    description: Optional[str] = None

    file_name: str
    mime_type: str
    file_size: int = Field(..., gt=0)
    compressed_size: int = Field(..., ge=0)

    file_path: str
    original_file_path: Optional[str] = None

    compression_type: str
    quality: Optional[int] = None
    preserved_for_ai: bool = False

    extracted_text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    summary: Optional[str] = None
    key_points: Optional[List[str]] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    processing_error: Optional[str] = None

    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    enrichment_version: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def compression_ratio(self) -> float:
        return compute_compression_ratio(self.file_size, self.compressed_size)

    @property
    def has_enrichment(self) -> bool:
        return any(getattr(self, name) is not None for name in ENRICHMENT_FIELDS)


class CompressionStats(BaseModel):
    """Per-upload compression figures returned to the caller."""
    file_size: int
    compressed_size: int
    compression_ratio: float
    space_saved: int
    compression_type: str


class UploadResult(BaseModel):
    """Synchronous result of an ingestion."""
    id: str
    file_path: str
    file_url: Optional[str] = None
    original_file_path: Optional[str] = None
    processing_status: ProcessingStatus
    compression_stats: CompressionStats


class CompressionTotals(BaseModel):
    """Rollup of stored sizes across items."""
    item_count: int = 0
    total_original_size: int = 0
    total_compressed_size: int = 0
    total_savings: int = 0
    average_compression_ratio: float = 0.0
    formatted_stats: Dict[str, str] = Field(default_factory=dict)
