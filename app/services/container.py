"""
Service container - wires the pipeline from settings.

Production uses Supabase storage and the PostgreSQL repository; either
backend can be switched to its in-memory counterpart through
STORAGE_BACKEND / PERSISTENCE_BACKEND for local development.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.config import Settings, settings as default_settings
from app.engine.ai_content import AIContentService, GeminiContentService
from app.engine.compression_engine import CompressionEngine
from app.engine.preservation_policy import PreservationPolicy
from app.repositories.knowledge_item_repository import (
    InMemoryKnowledgeItemRepository,
    KnowledgeItemRepository,
    SqlKnowledgeItemRepository,
)
from app.services.background_tasks import EnrichmentQueue
from app.services.enrichment_service import EnrichmentService
from app.services.ingestion_service import IngestionService
from app.services.retrieval_service import RetrievalService
from app.services.storage import InMemoryStorageGateway, StorageGateway
from app.services.supabase_storage import SupabaseStorageGateway

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """The wired pipeline. Exposes the four operations via its services."""
    settings: Settings
    engine: CompressionEngine
    policy: PreservationPolicy
    storage: StorageGateway
    repository: KnowledgeItemRepository
    ai_service: AIContentService
    enrichment: EnrichmentService
    queue: EnrichmentQueue
    ingestion: IngestionService
    retrieval: RetrievalService


def build_storage(config: Settings) -> StorageGateway:
    if config.storage_backend == "memory":
        logger.warning("Using in-memory blob storage; blobs are lost on restart")
        return InMemoryStorageGateway()
    return SupabaseStorageGateway(url=config.supabase_url, key=config.supabase_key)


def build_repository(config: Settings) -> KnowledgeItemRepository:
    if config.persistence_backend == "memory":
        logger.warning("Using in-memory knowledge item repository; records are lost on restart")
        return InMemoryKnowledgeItemRepository()
    return SqlKnowledgeItemRepository()


def build_container(
    config: Optional[Settings] = None,
    *,
    storage: Optional[StorageGateway] = None,
    repository: Optional[KnowledgeItemRepository] = None,
    ai_service: Optional[AIContentService] = None,
    engine: Optional[CompressionEngine] = None,
) -> ServiceContainer:
    """Build the service graph. Keyword overrides replace individual collaborators."""
    config = config or default_settings

    if engine is None:
        engine = CompressionEngine(
            level=config.compression_level,
            strict_decompression=config.strict_decompression,
        )
    policy = PreservationPolicy(
        ratio_threshold=config.preservation_ratio_threshold,
        critical_mime_types=config.critical_mime_types,
    )
    if storage is None:
        storage = build_storage(config)
    if repository is None:
        repository = build_repository(config)
    if ai_service is None:
        ai_service = GeminiContentService(max_input_chars=config.ai_max_input_chars)

    enrichment = EnrichmentService(
        repository,
        ai_service,
        min_text_length=config.enrichment_min_text_length,
        subtask_timeout=config.enrichment_subtask_timeout,
    )
    queue = EnrichmentQueue(
        enrichment.run_job,
        workers=config.enrichment_workers,
        max_size=config.enrichment_queue_size,
    )
    ingestion = IngestionService(
        engine,
        policy,
        storage,
        repository,
        queue,
        bucket=config.supabase_storage_bucket,
        max_upload_bytes=config.max_upload_bytes,
    )
    retrieval = RetrievalService(
        repository, storage, engine, bucket=config.supabase_storage_bucket
    )

    logger.info(
        f"Service container built: storage={config.storage_backend}, "
        f"persistence={config.persistence_backend}"
    )

    return ServiceContainer(
        settings=config,
        engine=engine,
        policy=policy,
        storage=storage,
        repository=repository,
        ai_service=ai_service,
        enrichment=enrichment,
        queue=queue,
        ingestion=ingestion,
        retrieval=retrieval,
    )


# Singleton instance
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get or create singleton ServiceContainer instance"""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def reset_container() -> None:
    """Drop the singleton (tests and shutdown)."""
    global _container
    _container = None
