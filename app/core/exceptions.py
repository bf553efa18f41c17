"""
Error taxonomy for the ingestion / compression / enrichment pipeline.

Gateways translate backend failures into these types so that services
only ever reason about one hierarchy.
"""
from typing import Optional


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base pipeline errors."""
    pass


class ValidationError(KnowledgeBaseError):
    """Upload is missing a file or a required field. Raised before any work begins."""
    pass


class CompressionError(KnowledgeBaseError):
    """A compression branch failed."""
    pass


class DecompressionError(KnowledgeBaseError):
    """A stored blob could not be restored to its original bytes."""
    pass


class StorageError(KnowledgeBaseError):
    """Blob put/get/delete failure."""

    def __init__(self, message: str, bucket: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.bucket = bucket
        self.path = path


class PersistenceError(KnowledgeBaseError):
    """Knowledge item create/update/read failure."""
    pass


class StaleEnrichmentError(PersistenceError):
    """A conditional update lost to a newer enrichment run for the same item."""

    def __init__(self, item_id: str, expected_version: int, actual_version: Optional[int] = None):
        super().__init__(
            f"Enrichment version mismatch for {item_id}: "
            f"expected {expected_version}, found {actual_version}"
        )
        self.item_id = item_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ItemNotFoundError(KnowledgeBaseError):
    """No knowledge item exists with the given id."""

    def __init__(self, item_id: str):
        super().__init__(f"Knowledge item not found: {item_id}")
        self.item_id = item_id


class EnrichmentSubtaskError(KnowledgeBaseError):
    """One AI sub-task (summary, key points, analysis) failed."""

    def __init__(self, subtask: str, message: str):
        super().__init__(f"{subtask} failed: {message}")
        self.subtask = subtask


class IngestionError(KnowledgeBaseError):
    """
    Upload aborted.

    ``stage`` is one of ``compress``, ``store`` or ``persist``; ``cause``
    is the underlying CompressionError, StorageError or PersistenceError.
    """

    def __init__(self, message: str, stage: str, cause: Optional[Exception] = None, item_id: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
        self.cause = cause
        self.item_id = item_id
