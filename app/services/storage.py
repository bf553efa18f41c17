"""
Blob storage gateway.

StorageGateway is the async interface the pipeline stores compressed and
original blobs through. InMemoryStorageGateway backs local development
and tests; the Supabase implementation lives in supabase_storage.py.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from app.core.exceptions import StorageError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """Location of a stored blob."""
    path: str
    url: Optional[str] = None
    bucket: Optional[str] = None


class StorageGateway(Protocol):
    """Interface for blob storage. Every method raises StorageError on failure."""

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        ...

    async def get(self, bucket: str, path: str) -> bytes:
        ...

    async def delete(self, bucket: str, path: str) -> None:
        ...


class InMemoryStorageGateway:
    """Dict-backed storage keyed by (bucket, path)."""

    def __init__(self, base_url: str = "memory://"):
        self.base_url = base_url
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self._lock = asyncio.Lock()

    def _url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}{bucket}/{path}"

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        async with self._lock:
            self._objects[(bucket, path)] = (bytes(data), content_type)
        logger.debug(f"Stored {len(data)} bytes at {bucket}/{path}")
        return StoredObject(path=path, url=self._url(bucket, path), bucket=bucket)

    async def get(self, bucket: str, path: str) -> bytes:
        async with self._lock:
            entry = self._objects.get((bucket, path))
        if entry is None:
            raise StorageError(f"Object not found: {bucket}/{path}", bucket=bucket, path=path)
        return entry[0]

    async def delete(self, bucket: str, path: str) -> None:
        async with self._lock:
            if self._objects.pop((bucket, path), None) is None:
                raise StorageError(f"Object not found: {bucket}/{path}", bucket=bucket, path=path)
        logger.debug(f"Deleted {bucket}/{path}")

    def content_type(self, bucket: str, path: str) -> Optional[str]:
        entry = self._objects.get((bucket, path))
        return entry[1] if entry else None

    def paths(self, bucket: Optional[str] = None) -> list[str]:
        """Stored paths, optionally limited to one bucket."""
        return sorted(p for (b, p) in self._objects if bucket is None or b == bucket)

    def __len__(self) -> int:
        return len(self._objects)
