"""
Pytest Configuration and Fixtures for Knowledge Vault Tests
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from hypothesis import settings

from app.core.exceptions import PersistenceError, StorageError
from app.engine.compression_engine import CompressionEngine
from app.engine.preservation_policy import PreservationPolicy
from app.models.knowledge_item import UploadMetadata
from app.repositories.knowledge_item_repository import InMemoryKnowledgeItemRepository
from app.services.background_tasks import EnrichmentJob
from app.services.enrichment_service import EnrichmentService
from app.services.ingestion_service import IngestionService
from app.services.retrieval_service import RetrievalService
from app.services.storage import InMemoryStorageGateway, StoredObject

# Configure Hypothesis profiles
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=5000)
settings.load_profile("dev")

BUCKET = "knowledge-base-files"


# =============================================================================
# Fakes
# =============================================================================

class StaticExtractor:
    """Text extractor that returns a fixed value (or raises)."""

    def __init__(self, text: Optional[str] = None, error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = 0

    def extract(self, data: bytes, mime_type: str) -> Optional[str]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FailingStorageGateway(InMemoryStorageGateway):
    """
    In-memory storage that fails on chosen operations.

    ``fail_put`` / ``fail_get`` / ``fail_delete`` are path prefixes; any
    operation on a path starting with one of them raises StorageError.
    """

    def __init__(self, fail_put=(), fail_get=(), fail_delete=()):
        super().__init__()
        self.fail_put = tuple(fail_put)
        self.fail_get = tuple(fail_get)
        self.fail_delete = tuple(fail_delete)
        self.put_calls: List[str] = []
        self.delete_calls: List[str] = []

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        self.put_calls.append(path)
        if self.fail_put and path.startswith(self.fail_put):
            raise StorageError(f"put failed: {path}", bucket=bucket, path=path)
        return await super().put(bucket, path, data, content_type)

    async def get(self, bucket: str, path: str) -> bytes:
        if self.fail_get and path.startswith(self.fail_get):
            raise StorageError(f"get failed: {path}", bucket=bucket, path=path)
        return await super().get(bucket, path)

    async def delete(self, bucket: str, path: str) -> None:
        self.delete_calls.append(path)
        if self.fail_delete and path.startswith(self.fail_delete):
            raise StorageError(f"delete failed: {path}", bucket=bucket, path=path)
        await super().delete(bucket, path)


class FlakyRepository(InMemoryKnowledgeItemRepository):
    """In-memory repository with switchable create/update failures."""

    def __init__(self, fail_create: bool = False, fail_updates: int = 0):
        super().__init__()
        self.fail_create = fail_create
        self.fail_updates = fail_updates
        self.update_calls: List[Dict[str, Any]] = []

    async def create(self, item):
        if self.fail_create:
            raise PersistenceError("database unavailable")
        return await super().create(item)

    async def update_by_id(self, item_id, fields, *, expected_enrichment_version=None):
        self.update_calls.append(dict(fields))
        if self.fail_updates > 0:
            self.fail_updates -= 1
            raise PersistenceError("database unavailable")
        return await super().update_by_id(
            item_id, fields, expected_enrichment_version=expected_enrichment_version
        )


class ScriptedAIService:
    """
    AIContentService double.

    Each sub-task returns its scripted value, or raises it when the value
    is an exception. ``delay`` makes every call sleep first.
    """

    def __init__(
        self,
        summary: Any = "A short summary.",
        key_points: Any = None,
        analysis: Any = None,
        delay: float = 0.0,
    ):
        self.summary = summary
        self.key_points = key_points if key_points is not None else ["First key point of the text"]
        self.analysis = analysis if analysis is not None else {
            "topics": ["compression"],
            "difficulty": "beginner",
            "keyTerms": ["gzip"],
            "suggestedCategories": ["engineering"],
        }
        self.delay = delay
        self.calls: List[str] = []

    async def _respond(self, name: str, value: Any) -> Any:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(value, BaseException):
            raise value
        return value

    async def summarize(self, text: str) -> str:
        return await self._respond("summary", self.summary)

    async def extract_key_points(self, text: str) -> List[str]:
        return await self._respond("key_points", self.key_points)

    async def analyze(self, text: str) -> Dict[str, Any]:
        return await self._respond("analysis", self.analysis)


class RecordingDispatcher:
    """Collects submitted enrichment jobs instead of running them."""

    def __init__(self):
        self.jobs: List[EnrichmentJob] = []

    def submit(self, job: EnrichmentJob) -> None:
        self.jobs.append(job)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def storage():
    return FailingStorageGateway()


@pytest.fixture
def repository():
    return FlakyRepository()


@pytest.fixture
def ai_service():
    return ScriptedAIService()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine():
    """Compression engine with OCR stubbed out."""
    return CompressionEngine(level=9, strict_decompression=False, image_extractor=StaticExtractor(None))


@pytest.fixture
def policy():
    return PreservationPolicy(ratio_threshold=70.0, critical_mime_types=["application/pdf", "image/png"])


@pytest.fixture
def ingestion_service(engine, policy, storage, repository, dispatcher):
    return IngestionService(
        engine, policy, storage, repository, dispatcher,
        bucket=BUCKET, max_upload_bytes=1024 * 1024,
    )


@pytest.fixture
def enrichment_service(repository, ai_service):
    return EnrichmentService(repository, ai_service, min_text_length=10, subtask_timeout=2.0)


@pytest.fixture
def retrieval_service(repository, storage, engine):
    return RetrievalService(repository, storage, engine, bucket=BUCKET)


@pytest.fixture
def upload_metadata():
    return UploadMetadata(
        category_id="cat-history",
        title="Indus Valley Notes",
        description="Lecture notes",
        metadata={"subject": "History", "tags": ["ancient", "india"], "difficulty_level": "beginner"},
    )


@pytest.fixture
def sample_owner_id():
    """Sample owner ID for testing"""
    return "550e8400-e29b-41d4-a716-446655440000"


@pytest.fixture
def repetitive_text() -> bytes:
    """1000 bytes of highly redundant text (compresses far beyond 70%)."""
    return (b"The quick brown fox jumps over the lazy dog. " * 23)[:1000]


@pytest.fixture
def random_text() -> bytes:
    """1000 bytes of printable text with no redundancy to speak of."""
    import random
    rng = random.Random(1234)
    alphabet = b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789 .,;:!?"
    return bytes(rng.choice(alphabet) for _ in range(1000))
