"""
Background Tasks - Enrichment Queue

Enrichment runs after the upload request has returned. Jobs go into a
bounded asyncio queue consumed by a fixed pool of workers, so a burst of
uploads cannot start an unbounded number of concurrent LLM calls.

**Pattern:** Bounded queue + worker pool
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from app.core.config import settings
from app.models.knowledge_item import ProcessingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentJob:
    """Everything a worker needs to enrich one item without re-reading it."""
    item_id: str
    extracted_text: Optional[str]
    title: str
    enrichment_version: int = 0


JobHandler = Callable[[EnrichmentJob], Awaitable[Any]]


class EnrichmentQueue:
    """
    Bounded job queue with a fixed worker pool.

    ``submit`` never blocks and never raises. When the queue is full the
    job is parked in a put task that completes once a slot frees up.
    Handler exceptions are logged and counted; they never stop a worker.
    """

    def __init__(
        self,
        handler: JobHandler,
        workers: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        self._handler = handler
        self.num_workers = workers or settings.enrichment_workers
        self.max_size = max_size or settings.enrichment_queue_size

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_size)
        self._workers: List[asyncio.Task] = []
        self._pending_puts: Set[asyncio.Task] = set()

        self._queued_ids: List[str] = []
        self._deferred_ids: List[str] = []
        self._in_flight: Set[str] = set()

        self.stats: Dict[str, int] = {
            "jobs_submitted": 0,
            "jobs_deferred": 0,
            "jobs_dropped": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
        }

        logger.info(
            f"Enrichment queue initialized (capacity: {self.max_size}, workers: {self.num_workers})"
        )

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queued_item_ids(self) -> List[str]:
        return list(self._queued_ids) + list(self._deferred_ids)

    @property
    def in_flight_item_ids(self) -> List[str]:
        return sorted(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "queued": len(self._queued_ids),
            "deferred": len(self._deferred_ids),
            "in_flight": len(self._in_flight),
            "workers": len(self._workers),
            "capacity": self.max_size,
        }

    def submit(self, job: EnrichmentJob) -> None:
        """Enqueue a job without waiting for it to run."""
        self.stats["jobs_submitted"] += 1
        try:
            self._queue.put_nowait(job)
            self._queued_ids.append(job.item_id)
            logger.debug(f"[{job.item_id}] Queued enrichment v{job.enrichment_version}")
            return
        except asyncio.QueueFull:
            pass

        try:
            task = asyncio.get_running_loop().create_task(self._deferred_put(job))
        except RuntimeError:
            self.stats["jobs_dropped"] += 1
            logger.error(
                f"[{job.item_id}] Enrichment queue full and no event loop running; "
                f"job dropped, item will be retried on restart"
            )
            return

        self.stats["jobs_deferred"] += 1
        self._deferred_ids.append(job.item_id)
        self._pending_puts.add(task)
        task.add_done_callback(self._pending_puts.discard)
        logger.warning(f"[{job.item_id}] Enrichment queue full ({self.max_size}), job deferred")

    async def _deferred_put(self, job: EnrichmentJob) -> None:
        await self._queue.put(job)
        self._deferred_ids.remove(job.item_id)
        self._queued_ids.append(job.item_id)

    async def _worker(self, worker_id: int) -> None:
        while True:
            job: EnrichmentJob = await self._queue.get()
            self._queued_ids.remove(job.item_id)
            self._in_flight.add(job.item_id)
            try:
                await self._handler(job)
                self.stats["jobs_completed"] += 1
            except Exception as e:
                self.stats["jobs_failed"] += 1
                logger.error(f"[{job.item_id}] Enrichment worker {worker_id} failed: {e}")
            finally:
                self._in_flight.discard(job.item_id)
                self._queue.task_done()

    def start(self) -> None:
        """Spawn the worker pool on the running loop."""
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._workers = [
            loop.create_task(self._worker(i), name=f"enrichment-worker-{i}")
            for i in range(self.num_workers)
        ]
        logger.info(f"Started {self.num_workers} enrichment workers")

    async def join(self) -> None:
        """Wait until every submitted job (deferred ones included) has been handled."""
        while self._pending_puts:
            await asyncio.gather(*list(self._pending_puts))
        await self._queue.join()

    async def stop(self) -> List[str]:
        """
        Cancel workers and pending puts.

        Returns the ids of items whose enrichment did not finish; they
        remain ``processing`` and are picked up by requeue_stale_items on
        the next start.
        """
        leftover = self.queued_item_ids + self.in_flight_item_ids

        tasks = list(self._pending_puts) + self._workers
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._workers = []
        self._pending_puts.clear()

        if leftover:
            logger.warning(f"Enrichment stopped with {len(leftover)} unfinished item(s): {leftover}")
        else:
            logger.info("Enrichment queue stopped")
        return leftover


async def requeue_stale_items(repository, queue: EnrichmentQueue) -> int:
    """
    Re-submit every item still in ``processing``.

    Used at startup so enrichment interrupted by a restart is retried.
    Returns the number of jobs submitted.
    """
    items = await repository.list_by_status(ProcessingStatus.PROCESSING)
    for item in items:
        queue.submit(EnrichmentJob(
            item_id=item.id,
            extracted_text=item.extracted_text,
            title=item.title,
            enrichment_version=item.enrichment_version,
        ))
    if items:
        logger.info(f"Re-queued {len(items)} item(s) left in processing")
    return len(items)
