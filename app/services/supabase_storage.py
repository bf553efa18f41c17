"""
Supabase Storage gateway for knowledge base blobs.

Stores compressed blobs and preserved originals in the
``knowledge-base-files`` bucket (configurable). All supabase client
failures are translated into StorageError.

Path structure:
- compressed/{category_id}/{item_id}{ext}.gz
- originals/{category_id}/{item_id}{ext}
"""
import asyncio
import logging
from typing import Optional

from supabase import create_client, Client

from app.core.config import settings
from app.core.exceptions import StorageError
from app.services.storage import StoredObject

logger = logging.getLogger(__name__)


class SupabaseStorageGateway:
    """
    StorageGateway backed by Supabase Storage.

    The supabase client is synchronous, so every call is pushed to a
    worker thread. ``put`` retries with linear backoff.
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 1.0  # seconds

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        client: Optional[Client] = None,
        retry_delay: Optional[float] = None,
    ):
        """
        Initialize Supabase Storage gateway.

        Args:
            url: Supabase project URL (defaults to settings)
            key: Supabase API key (defaults to settings)
            client: Pre-built supabase client (tests)
            retry_delay: Base delay between put attempts
        """
        self.url = url or settings.supabase_url
        self.key = key or settings.supabase_key
        self.retry_delay = self.RETRY_DELAY if retry_delay is None else retry_delay

        self._client: Optional[Client] = client

    @property
    def client(self) -> Client:
        """Lazy initialization of Supabase client"""
        if self._client is None:
            if not self.url or not self.key:
                raise StorageError(
                    "Supabase URL and Key are required. "
                    "Set SUPABASE_URL and SUPABASE_KEY environment variables."
                )
            self._client = create_client(self.url, self.key)
        return self._client

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        """
        Upload a blob with retry logic.

        Raises:
            StorageError: after MAX_RETRIES failed attempts
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                await asyncio.to_thread(
                    self.client.storage.from_(bucket).upload,
                    path=path,
                    file=data,
                    file_options={
                        "content-type": content_type,
                        "upsert": "true",
                    },
                )
                public_url = self.get_public_url(bucket, path)
                logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
                return StoredObject(path=path, url=public_url, bucket=bucket)

            except Exception as e:
                last_error = e
                logger.warning(
                    f"Upload attempt {attempt + 1}/{self.MAX_RETRIES} for {path} failed: {e}"
                )
                if attempt < self.MAX_RETRIES - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        logger.error(f"Failed to upload {path} after {self.MAX_RETRIES} attempts")
        raise StorageError(
            f"Upload of {bucket}/{path} failed after {self.MAX_RETRIES} attempts: {last_error}",
            bucket=bucket,
            path=path,
        ) from last_error

    async def get(self, bucket: str, path: str) -> bytes:
        try:
            return await asyncio.to_thread(self.client.storage.from_(bucket).download, path)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Download of {bucket}/{path} failed: {e}", bucket=bucket, path=path) from e

    async def delete(self, bucket: str, path: str) -> None:
        try:
            await asyncio.to_thread(self.client.storage.from_(bucket).remove, [path])
            logger.info(f"Deleted {bucket}/{path}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Delete of {bucket}/{path} failed: {e}", bucket=bucket, path=path) from e

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        """Public URL for a stored file, or None if the client cannot build one."""
        try:
            return self.client.storage.from_(bucket).get_public_url(path)
        except Exception as e:
            logger.warning(f"Could not build public URL for {bucket}/{path}: {e}")
            return None

    async def check_health(self, bucket: Optional[str] = None) -> bool:
        """
        Check if Supabase Storage is accessible.

        Returns:
            True if storage is healthy
        """
        try:
            await asyncio.to_thread(
                self.client.storage.from_(bucket or settings.supabase_storage_bucket).list
            )
            return True
        except Exception as e:
            logger.error(f"Supabase Storage health check failed: {e}")
            return False
