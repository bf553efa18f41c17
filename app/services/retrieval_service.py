"""
Retrieval Service - original bytes and compression statistics.
"""

import asyncio
import logging
from typing import Optional

from app.core.config import settings
from app.core.exceptions import ItemNotFoundError, StorageError
from app.engine.compression_engine import CompressionEngine
from app.models.knowledge_item import CompressionTotals, compute_compression_ratio
from app.repositories.knowledge_item_repository import KnowledgeItemRepository
from app.services.storage import StorageGateway

logger = logging.getLogger(__name__)

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(num_bytes: int) -> str:
    """Render a byte count as ``"1.5 KB"``. Negative values keep their sign."""
    if num_bytes == 0:
        return "0 Bytes"
    sign = "-" if num_bytes < 0 else ""
    value = float(abs(num_bytes))
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{sign}{round(value, 2):g} {SIZE_UNITS[i]}"


class RetrievalService:
    """Reads stored items back out of storage."""

    def __init__(
        self,
        repository: KnowledgeItemRepository,
        storage: StorageGateway,
        engine: CompressionEngine,
        bucket: Optional[str] = None,
    ):
        self._repository = repository
        self._storage = storage
        self._engine = engine
        self.bucket = bucket or settings.supabase_storage_bucket

    async def get_original_bytes(self, item_id: str) -> bytes:
        """
        Return the original uploaded bytes.

        Prefers the preserved original; falls back to decompressing the
        compressed blob when there is none or it cannot be fetched.

        Raises:
            ItemNotFoundError: no item with this id
            StorageError: the compressed blob could not be fetched
            DecompressionError: the compressed blob is corrupt
        """
        item = await self._repository.get_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        if item.original_file_path:
            try:
                return await self._storage.get(self.bucket, item.original_file_path)
            except StorageError as e:
                logger.warning(
                    f"[{item_id}] Original fetch failed, falling back to compressed blob: {e}"
                )

        data = await self._storage.get(self.bucket, item.file_path)
        return await asyncio.to_thread(self._engine.decompress, data, item.compression_type)

    async def get_compression_stats(self, owner_id: Optional[str] = None) -> CompressionTotals:
        """Rollup of original vs compressed sizes, optionally for one owner."""
        totals = await self._repository.get_size_totals(owner_id)
        savings = totals.total_original_size - totals.total_compressed_size
        average = round(
            compute_compression_ratio(totals.total_original_size, totals.total_compressed_size), 2
        )

        return CompressionTotals(
            item_count=totals.item_count,
            total_original_size=totals.total_original_size,
            total_compressed_size=totals.total_compressed_size,
            total_savings=savings,
            average_compression_ratio=average,
            formatted_stats={
                "total_original_size": format_bytes(totals.total_original_size),
                "total_compressed_size": format_bytes(totals.total_compressed_size),
                "total_savings": format_bytes(savings),
            },
        )
