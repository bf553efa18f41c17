"""
Ingestion Service for the knowledge base.

Runs the synchronous part of an upload: Validate → Compress → Decide
preservation → Store blobs → Create record → Hand off enrichment.

The record is only created after the compressed blob is stored. Any
failure before the record exists rolls back the blobs written so far.
"""

import asyncio
import logging
import os
from typing import Any, List, Mapping, Optional, Protocol, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import (
    CompressionError,
    IngestionError,
    PersistenceError,
    StorageError,
    ValidationError,
)
from app.engine.compression_engine import CompressionEngine, CompressionOptions, CompressionResult
from app.engine.preservation_policy import PreservationPolicy
from app.models.knowledge_item import (
    CompressionStats,
    KnowledgeItem,
    ProcessingStatus,
    UploadMetadata,
    UploadResult,
)
from app.repositories.knowledge_item_repository import KnowledgeItemRepository
from app.services.background_tasks import EnrichmentJob
from app.services.storage import StorageGateway, StoredObject

logger = logging.getLogger(__name__)

COMPRESSED_CONTENT_TYPE = "application/gzip"


class EnrichmentDispatcher(Protocol):
    """Anything that accepts enrichment jobs without blocking the caller."""

    def submit(self, job: EnrichmentJob) -> None:
        ...


def compressed_blob_path(category_id: str, item_id: str, file_name: str) -> str:
    ext = os.path.splitext(file_name)[1]
    return f"compressed/{category_id}/{item_id}{ext}.gz"


def original_blob_path(category_id: str, item_id: str, file_name: str) -> str:
    ext = os.path.splitext(file_name)[1]
    return f"originals/{category_id}/{item_id}{ext}"


class IngestionService:
    """
    Coordinates a single upload end to end.

    Collaborators are injected so that tests can substitute fakes; see
    app.services.container for the production wiring.
    """

    def __init__(
        self,
        engine: CompressionEngine,
        policy: PreservationPolicy,
        storage: StorageGateway,
        repository: KnowledgeItemRepository,
        dispatcher: EnrichmentDispatcher,
        bucket: Optional[str] = None,
        max_upload_bytes: Optional[int] = None,
    ):
        self._engine = engine
        self._policy = policy
        self._storage = storage
        self._repository = repository
        self._dispatcher = dispatcher
        self.bucket = bucket or settings.supabase_storage_bucket
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes

    def _validate(
        self,
        file_bytes: bytes,
        mime_type: str,
        file_name: str,
        upload_metadata: Union[UploadMetadata, Mapping[str, Any], None],
        owner_id: str,
    ) -> UploadMetadata:
        if not file_bytes:
            raise ValidationError("No file provided")
        if len(file_bytes) > self.max_upload_bytes:
            raise ValidationError(
                f"File too large: {len(file_bytes)} bytes (limit {self.max_upload_bytes})"
            )
        for name, value in (("mime_type", mime_type), ("file_name", file_name), ("owner_id", owner_id)):
            if not value or not str(value).strip():
                raise ValidationError(f"{name} is required")

        if upload_metadata is None:
            raise ValidationError("category_id and title are required")
        if isinstance(upload_metadata, UploadMetadata):
            return upload_metadata
        try:
            return UploadMetadata.model_validate(upload_metadata)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid upload metadata: {e}") from e

    async def _cleanup(self, item_id: str, stored: List[Tuple[str, str]]) -> None:
        """Best-effort removal of blobs stored for an aborted upload."""
        for bucket, path in reversed(stored):
            try:
                await self._storage.delete(bucket, path)
                logger.info(f"[{item_id}] Rolled back blob {bucket}/{path}")
            except Exception as e:
                logger.error(f"[{item_id}] Failed to roll back blob {bucket}/{path}: {e}")

    async def ingest(
        self,
        file_bytes: bytes,
        mime_type: str,
        file_name: str,
        upload_metadata: Union[UploadMetadata, Mapping[str, Any], None],
        owner_id: str,
        options: Optional[CompressionOptions] = None,
    ) -> UploadResult:
        """
        Ingest one uploaded file.

        Returns once the record exists with status ``processing``;
        enrichment continues in the background.

        Raises:
            ValidationError: before any work is done
            IngestionError: compress, store or persist stage failed
        """
        meta = self._validate(file_bytes, mime_type, file_name, upload_metadata, owner_id)
        item_id = str(uuid4())
        stored: List[Tuple[str, str]] = []

        logger.info(f"[{item_id}] Ingesting {file_name} ({mime_type}, {len(file_bytes)} bytes)")

        # Compress
        try:
            result: CompressionResult = await asyncio.to_thread(
                self._engine.compress, file_bytes, mime_type, file_name, options
            )
        except CompressionError as e:
            logger.error(f"[{item_id}] Compression failed: {e}")
            raise IngestionError(
                f"Compression failed for {file_name}: {e}", stage="compress", cause=e, item_id=item_id
            ) from e

        ratio = result.compression_ratio
        preserve = self._policy.should_preserve_original(mime_type, ratio)
        logger.info(f"[{item_id}] Original {self._policy.reason(mime_type, ratio)}")

        # Store
        compressed_path = compressed_blob_path(meta.category_id, item_id, file_name)
        try:
            compressed_obj: StoredObject = await self._storage.put(
                self.bucket, compressed_path, result.compressed_bytes, COMPRESSED_CONTENT_TYPE
            )
            stored.append((self.bucket, compressed_path))
        except StorageError as e:
            logger.error(f"[{item_id}] Failed to store compressed blob: {e}")
            await self._cleanup(item_id, stored)
            raise IngestionError(
                f"Failed to store {file_name}: {e}", stage="store", cause=e, item_id=item_id
            ) from e

        original_path: Optional[str] = None
        if preserve:
            candidate = original_blob_path(meta.category_id, item_id, file_name)
            try:
                await self._storage.put(self.bucket, candidate, file_bytes, mime_type)
                stored.append((self.bucket, candidate))
                original_path = candidate
            except Exception as e:
                logger.warning(f"[{item_id}] Failed to store original, continuing without it: {e}")

        # Persist
        item = KnowledgeItem(
            id=item_id,
            owner_id=owner_id,
            category_id=meta.category_id,
            custom_category_type=meta.custom_category_type,
            title=meta.title,
            description=meta.description,
            file_name=file_name,
            mime_type=mime_type,
            file_size=result.original_size,
            compressed_size=result.compressed_size,
            file_path=compressed_path,
            original_file_path=original_path,
            compression_type=result.metadata.compression_type,
            quality=result.metadata.quality,
            preserved_for_ai=result.metadata.preserved_for_ai,
            extracted_text=result.extracted_text,
            metadata=dict(meta.metadata),
            processing_status=ProcessingStatus.PROCESSING,
        )
        try:
            await self._repository.create(item)
        except PersistenceError as e:
            logger.error(f"[{item_id}] Failed to create record: {e}")
            await self._cleanup(item_id, stored)
            raise IngestionError(
                f"Failed to save {file_name}: {e}", stage="persist", cause=e, item_id=item_id
            ) from e

        # Enrichment runs independently of this request
        try:
            self._dispatcher.submit(EnrichmentJob(
                item_id=item_id,
                extracted_text=item.extracted_text,
                title=item.title,
                enrichment_version=item.enrichment_version,
            ))
        except Exception as e:
            logger.error(f"[{item_id}] Failed to queue enrichment, will retry on restart: {e}")

        logger.info(
            f"[{item_id}] Ingested {file_name}: {result.compression_type}, "
            f"{result.original_size} -> {result.compressed_size} bytes, "
            f"original={'kept' if original_path else 'not kept'}"
        )

        return UploadResult(
            id=item_id,
            file_path=compressed_path,
            file_url=compressed_obj.url,
            original_file_path=original_path,
            processing_status=ProcessingStatus.PROCESSING,
            compression_stats=CompressionStats(
                file_size=result.original_size,
                compressed_size=result.compressed_size,
                compression_ratio=ratio,
                space_saved=result.original_size - result.compressed_size,
                compression_type=result.compression_type,
            ),
        )
