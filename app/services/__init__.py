"""Service layer for the Knowledge Vault pipeline."""

from app.services.background_tasks import EnrichmentJob, EnrichmentQueue, requeue_stale_items
from app.services.container import ServiceContainer, build_container, get_container
from app.services.enrichment_service import EnrichmentService
from app.services.ingestion_service import IngestionService
from app.services.retrieval_service import RetrievalService, format_bytes

__all__ = [
    "EnrichmentJob",
    "EnrichmentQueue",
    "requeue_stale_items",
    "ServiceContainer",
    "build_container",
    "get_container",
    "EnrichmentService",
    "IngestionService",
    "RetrievalService",
    "format_bytes",
]
