"""
Unit tests for the ingestion service: validate, compress, store, persist
and hand off enrichment.
"""
import gzip

import pytest

from app.core.exceptions import IngestionError, ValidationError
from app.engine.compression_engine import GENERIC_TAG, PDF_TAG, TEXT_TAG, CompressionEngine
from app.models.knowledge_item import ProcessingStatus
from app.services.ingestion_service import (
    IngestionService,
    compressed_blob_path,
    original_blob_path,
)

from conftest import (
    BUCKET,
    FailingStorageGateway,
    FlakyRepository,
    RecordingDispatcher,
    StaticExtractor,
)


def build_service(engine, policy, storage=None, repository=None, dispatcher=None):
    return IngestionService(
        engine,
        policy,
        FailingStorageGateway() if storage is None else storage,
        FlakyRepository() if repository is None else repository,
        RecordingDispatcher() if dispatcher is None else dispatcher,
        bucket=BUCKET,
        max_upload_bytes=1024 * 1024,
    )


class CrashingOriginalsGateway(FailingStorageGateway):
    """Raises a non-storage error when an original is written."""

    async def put(self, bucket, path, data, content_type):
        if path.startswith("originals/"):
            raise RuntimeError("connection reset")
        return await super().put(bucket, path, data, content_type)


class TestBlobPaths:

    def test_compressed_path_keeps_extension(self):
        assert compressed_blob_path("cat", "id-1", "notes.tar.txt") == "compressed/cat/id-1.txt.gz"

    def test_original_path(self):
        assert original_blob_path("cat", "id-1", "scan.PDF") == "originals/cat/id-1.PDF"

    def test_file_without_extension(self):
        assert compressed_blob_path("cat", "id-1", "README") == "compressed/cat/id-1.gz"


class TestValidation:

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, ingestion_service, upload_metadata, sample_owner_id, storage):
        with pytest.raises(ValidationError):
            await ingestion_service.ingest(b"", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        assert storage.put_calls == []

    @pytest.mark.asyncio
    async def test_oversized_file_rejected(self, ingestion_service, upload_metadata, sample_owner_id):
        with pytest.raises(ValidationError, match="too large"):
            await ingestion_service.ingest(
                b"x" * (1024 * 1024 + 1), "text/plain", "a.txt", upload_metadata, sample_owner_id
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("metadata", [
        None,
        {"title": "No category"},
        {"category_id": "cat", "title": "   "},
        {"category_id": "", "title": "T"},
    ])
    async def test_missing_required_metadata(self, ingestion_service, sample_owner_id, metadata, repository):
        with pytest.raises(ValidationError):
            await ingestion_service.ingest(b"hello", "text/plain", "a.txt", metadata, sample_owner_id)
        assert repository.count() == 0

    @pytest.mark.asyncio
    async def test_missing_owner_rejected(self, ingestion_service, upload_metadata):
        with pytest.raises(ValidationError, match="owner_id"):
            await ingestion_service.ingest(b"hello", "text/plain", "a.txt", upload_metadata, "")

    @pytest.mark.asyncio
    async def test_dict_metadata_is_accepted(self, ingestion_service, sample_owner_id, repository):
        result = await ingestion_service.ingest(
            b"hello world", "text/plain", "a.txt",
            {"category_id": "cat-1", "title": "Hello", "metadata": {"tags": ["x"]}},
            sample_owner_id,
        )
        item = await repository.get_by_id(result.id)
        assert item.category_id == "cat-1"
        assert item.metadata == {"tags": ["x"]}

    @pytest.mark.asyncio
    async def test_free_form_metadata_is_stored_unchanged(self, ingestion_service, sample_owner_id, repository):
        metadata = {
            "subject": "History",
            "difficulty_level": "",
            "chapter": "3",
            "page_count": 12,
            "source": None,
            "extra": {"reviewed": True},
        }
        result = await ingestion_service.ingest(
            b"hello world", "text/plain", "a.txt",
            {"category_id": "cat-1", "title": "Hello", "metadata": metadata},
            sample_owner_id,
        )
        item = await repository.get_by_id(result.id)
        assert item.metadata == metadata


class TestIngest:

    @pytest.mark.asyncio
    async def test_redundant_text_keeps_original(
        self, ingestion_service, upload_metadata, sample_owner_id, repetitive_text, storage, repository, dispatcher
    ):
        result = await ingestion_service.ingest(
            repetitive_text, "text/plain", "notes.txt", upload_metadata, sample_owner_id
        )

        assert result.processing_status == ProcessingStatus.PROCESSING
        assert result.compression_stats.compression_ratio > 70
        assert result.compression_stats.compression_type == TEXT_TAG
        assert result.file_path == f"compressed/cat-history/{result.id}.txt.gz"
        assert result.original_file_path == f"originals/cat-history/{result.id}.txt"

        stored = await storage.get(BUCKET, result.file_path)
        assert gzip.decompress(stored) == repetitive_text
        assert storage.content_type(BUCKET, result.file_path) == "application/gzip"
        assert await storage.get(BUCKET, result.original_file_path) == repetitive_text
        assert storage.content_type(BUCKET, result.original_file_path) == "text/plain"

        item = await repository.get_by_id(result.id)
        assert item.processing_status == ProcessingStatus.PROCESSING
        assert item.file_size == 1000
        assert item.compressed_size == len(stored)
        assert item.original_file_path == result.original_file_path
        assert item.extracted_text == repetitive_text.decode("utf-8")
        assert item.metadata == {
            "subject": "History", "tags": ["ancient", "india"], "difficulty_level": "beginner",
        }

        assert len(dispatcher.jobs) == 1
        job = dispatcher.jobs[0]
        assert job.item_id == result.id
        assert job.extracted_text == item.extracted_text
        assert job.title == "Indus Valley Notes"
        assert job.enrichment_version == 0

    @pytest.mark.asyncio
    async def test_random_text_does_not_keep_original(
        self, ingestion_service, upload_metadata, sample_owner_id, random_text, storage, repository
    ):
        result = await ingestion_service.ingest(
            random_text, "text/plain", "noise.txt", upload_metadata, sample_owner_id
        )

        assert result.compression_stats.compression_ratio <= 70
        assert result.original_file_path is None
        assert storage.paths(BUCKET) == [result.file_path]

        item = await repository.get_by_id(result.id)
        assert item.original_file_path is None
        assert item.extracted_text == random_text.decode("utf-8")

    @pytest.mark.asyncio
    async def test_pdf_always_keeps_original(self, policy, upload_metadata, sample_owner_id):
        engine = CompressionEngine(level=9, pdf_extractor=StaticExtractor("Extracted PDF text"))
        dispatcher = RecordingDispatcher()
        service = build_service(engine, policy, dispatcher=dispatcher)
        data = b"%PDF-1.4 tiny"

        result = await service.ingest(data, "application/pdf", "doc.pdf", upload_metadata, sample_owner_id)

        assert result.compression_stats.compression_type == PDF_TAG
        assert result.compression_stats.compression_ratio < 0
        assert result.original_file_path == f"originals/cat-history/{result.id}.pdf"
        assert dispatcher.jobs[0].extracted_text == "Extracted PDF text"

    @pytest.mark.asyncio
    async def test_compression_stats(self, ingestion_service, upload_metadata, sample_owner_id, repetitive_text):
        result = await ingestion_service.ingest(
            repetitive_text, "text/plain", "notes.txt", upload_metadata, sample_owner_id
        )
        stats = result.compression_stats
        assert stats.file_size == 1000
        assert stats.space_saved == stats.file_size - stats.compressed_size
        assert stats.compression_ratio == pytest.approx(
            (stats.file_size - stats.compressed_size) / stats.file_size * 100
        )

    @pytest.mark.asyncio
    async def test_file_url_comes_from_storage(self, ingestion_service, upload_metadata, sample_owner_id):
        result = await ingestion_service.ingest(b"hello", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        assert result.file_url == f"memory://{BUCKET}/{result.file_path}"

    @pytest.mark.asyncio
    async def test_unknown_type_uses_generic_codec(self, ingestion_service, upload_metadata, sample_owner_id, dispatcher):
        result = await ingestion_service.ingest(
            b"\x00\x01\x02" * 10, "application/x-custom", "blob.bin", upload_metadata, sample_owner_id
        )
        assert result.compression_stats.compression_type == GENERIC_TAG
        assert dispatcher.jobs[0].extracted_text is None

    @pytest.mark.asyncio
    async def test_each_upload_gets_a_new_id(self, ingestion_service, upload_metadata, sample_owner_id, repository):
        first = await ingestion_service.ingest(b"same", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        second = await ingestion_service.ingest(b"same", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        assert first.id != second.id
        assert repository.count() == 2


class TestIngestFailures:

    @pytest.mark.asyncio
    async def test_compressed_store_failure_leaves_nothing(
        self, engine, policy, upload_metadata, sample_owner_id, repetitive_text
    ):
        storage = FailingStorageGateway(fail_put=("compressed/",))
        repository = FlakyRepository()
        dispatcher = RecordingDispatcher()
        service = build_service(engine, policy, storage, repository, dispatcher)

        with pytest.raises(IngestionError) as exc_info:
            await service.ingest(repetitive_text, "text/plain", "a.txt", upload_metadata, sample_owner_id)

        assert exc_info.value.stage == "store"
        assert len(storage) == 0
        assert repository.count() == 0
        assert dispatcher.jobs == []

    @pytest.mark.asyncio
    async def test_original_store_failure_is_tolerated(
        self, engine, policy, upload_metadata, sample_owner_id, repetitive_text
    ):
        storage = FailingStorageGateway(fail_put=("originals/",))
        repository = FlakyRepository()
        service = build_service(engine, policy, storage, repository)

        result = await service.ingest(repetitive_text, "text/plain", "a.txt", upload_metadata, sample_owner_id)

        assert result.original_file_path is None
        item = await repository.get_by_id(result.id)
        assert item.original_file_path is None
        assert storage.paths(BUCKET) == [result.file_path]

    @pytest.mark.asyncio
    async def test_unexpected_original_store_error_is_tolerated(
        self, engine, policy, upload_metadata, sample_owner_id, repetitive_text
    ):
        storage = CrashingOriginalsGateway()
        dispatcher = RecordingDispatcher()
        service = build_service(engine, policy, storage, dispatcher=dispatcher)

        result = await service.ingest(repetitive_text, "text/plain", "a.txt", upload_metadata, sample_owner_id)

        assert result.original_file_path is None
        assert storage.paths(BUCKET) == [result.file_path]
        assert len(dispatcher.jobs) == 1

    @pytest.mark.asyncio
    async def test_record_failure_removes_blobs(
        self, engine, policy, upload_metadata, sample_owner_id, repetitive_text
    ):
        storage = FailingStorageGateway()
        dispatcher = RecordingDispatcher()
        service = build_service(engine, policy, storage, FlakyRepository(fail_create=True), dispatcher)

        with pytest.raises(IngestionError) as exc_info:
            await service.ingest(repetitive_text, "text/plain", "a.txt", upload_metadata, sample_owner_id)

        assert exc_info.value.stage == "persist"
        assert exc_info.value.item_id is not None
        assert len(storage) == 0
        assert len(storage.delete_calls) == 2
        assert dispatcher.jobs == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_still_raises_original_error(
        self, engine, policy, upload_metadata, sample_owner_id
    ):
        storage = FailingStorageGateway(fail_delete=("compressed/",))
        service = build_service(engine, policy, storage, FlakyRepository(fail_create=True))

        with pytest.raises(IngestionError) as exc_info:
            await service.ingest(b"hello", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        assert exc_info.value.stage == "persist"

    @pytest.mark.asyncio
    async def test_dispatch_failure_does_not_fail_upload(
        self, engine, policy, upload_metadata, sample_owner_id, repository
    ):
        class BrokenDispatcher:
            def submit(self, job):
                raise RuntimeError("queue closed")

        service = build_service(engine, policy, repository=repository, dispatcher=BrokenDispatcher())
        result = await service.ingest(b"hello", "text/plain", "a.txt", upload_metadata, sample_owner_id)
        assert (await repository.get_by_id(result.id)).processing_status == ProcessingStatus.PROCESSING
