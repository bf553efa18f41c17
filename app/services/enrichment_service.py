"""
Enrichment Service - AI summary, key points and analysis for stored items.

Runs after ingestion has returned. The three sub-tasks are independent:
each one that succeeds contributes its field, each one that fails is
logged and omitted, and the item still ends ``completed``.

Every terminal write is a compare-and-set on ``enrichment_version`` so a
run that was superseded by a regeneration cannot overwrite the newer
result.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from app.core.config import settings
from app.core.exceptions import (
    EnrichmentSubtaskError,
    ItemNotFoundError,
    StaleEnrichmentError,
)
from app.engine.ai_content import AIContentService
from app.models.knowledge_item import KnowledgeItem, ProcessingStatus
from app.repositories.knowledge_item_repository import KnowledgeItemRepository
from app.services.background_tasks import EnrichmentJob

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "No text content found for AI processing"

# sub-task name -> KnowledgeItem field, in merge order
SUBTASK_FIELDS: Dict[str, str] = {
    "summary": "summary",
    "key_points": "key_points",
    "analysis": "ai_analysis",
}


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Err:
    reason: str


SubtaskResult = Union[Ok, Err]


def merge_subtask_results(results: Mapping[str, SubtaskResult], item_id: str = "") -> Dict[str, Any]:
    """
    Build the terminal patch from sub-task outcomes.

    Ok results set their field; Err results are logged and left out.
    The status is always ``completed``.
    """
    patch: Dict[str, Any] = {"processing_status": ProcessingStatus.COMPLETED}
    for subtask, field_name in SUBTASK_FIELDS.items():
        result = results.get(subtask)
        if isinstance(result, Ok):
            patch[field_name] = result.value
        elif isinstance(result, Err):
            error = EnrichmentSubtaskError(subtask, result.reason)
            logger.warning(f"[{item_id}] {error}")
    return patch


class EnrichmentService:
    """Enrichment worker logic. Stateless apart from its collaborators."""

    def __init__(
        self,
        repository: KnowledgeItemRepository,
        ai_service: AIContentService,
        min_text_length: Optional[int] = None,
        subtask_timeout: Optional[float] = None,
    ):
        self._repository = repository
        self._ai = ai_service
        self.min_text_length = (
            settings.enrichment_min_text_length if min_text_length is None else min_text_length
        )
        self.subtask_timeout = subtask_timeout or settings.enrichment_subtask_timeout

    async def _run_subtask(
        self,
        name: str,
        func: Callable[[str], Awaitable[Any]],
        text: str,
    ) -> SubtaskResult:
        try:
            value = await asyncio.wait_for(func(text), timeout=self.subtask_timeout)
            return Ok(value)
        except asyncio.TimeoutError:
            return Err(f"timed out after {self.subtask_timeout:g}s")
        except Exception as e:
            return Err(str(e) or type(e).__name__)

    async def _build_patch(self, item_id: str, text: Optional[str]) -> Dict[str, Any]:
        if not text or len(text) < self.min_text_length:
            logger.info(f"[{item_id}] Skipping AI enrichment: no usable text")
            return {
                "processing_status": ProcessingStatus.COMPLETED,
                "processing_error": NO_TEXT_MESSAGE,
            }

        names = list(SUBTASK_FIELDS)
        outcomes = await asyncio.gather(
            self._run_subtask("summary", self._ai.summarize, text),
            self._run_subtask("key_points", self._ai.extract_key_points, text),
            self._run_subtask("analysis", self._ai.analyze, text),
        )
        return merge_subtask_results(dict(zip(names, outcomes)), item_id=item_id)

    async def enrich(
        self,
        item_id: str,
        extracted_text: Optional[str],
        title: str,
        enrichment_version: int = 0,
    ) -> Optional[KnowledgeItem]:
        """
        Enrich one item and write its terminal status.

        Returns the updated item, or None when the run was superseded or
        had to be marked failed. Never raises.
        """
        logger.info(f"[{item_id}] Enriching '{title}' (v{enrichment_version})")
        try:
            patch = await self._build_patch(item_id, extracted_text)
            updated = await self._repository.update_by_id(
                item_id, patch, expected_enrichment_version=enrichment_version
            )
            logger.info(
                f"[{item_id}] Enrichment v{enrichment_version} completed: "
                f"{sorted(k for k in patch if k in SUBTASK_FIELDS.values())}"
            )
            return updated
        except StaleEnrichmentError as e:
            logger.info(f"[{item_id}] Enrichment v{enrichment_version} superseded, result discarded: {e}")
            return None
        except ItemNotFoundError:
            logger.warning(f"[{item_id}] Item disappeared before enrichment finished")
            return None
        except Exception as e:
            logger.error(f"[{item_id}] Enrichment v{enrichment_version} failed: {e}")
            await self._mark_failed(item_id, enrichment_version, e)
            return None

    async def _mark_failed(self, item_id: str, enrichment_version: int, error: Exception) -> None:
        try:
            await self._repository.update_by_id(
                item_id,
                {
                    "processing_status": ProcessingStatus.FAILED,
                    "processing_error": f"Enrichment failed: {error}",
                },
                expected_enrichment_version=enrichment_version,
            )
        except StaleEnrichmentError:
            logger.info(f"[{item_id}] Failure of v{enrichment_version} not recorded, a newer run owns the item")
        except Exception as write_error:
            logger.error(
                f"[{item_id}] Could not record enrichment failure, item stays processing: {write_error}"
            )

    async def regenerate_ai_content(self, item_id: str) -> Optional[KnowledgeItem]:
        """
        Re-run enrichment for an existing item.

        Resets the item to ``processing`` with cleared outputs and a bumped
        enrichment version, then enriches with the stored text.

        Raises:
            ItemNotFoundError: no item with this id
            StaleEnrichmentError: a concurrent regeneration won the reset
        """
        item = await self._repository.get_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        new_version = item.enrichment_version + 1
        await self._repository.update_by_id(
            item_id,
            {
                "processing_status": ProcessingStatus.PROCESSING,
                "summary": None,
                "key_points": None,
                "ai_analysis": None,
                "processing_error": None,
                "enrichment_version": new_version,
            },
            expected_enrichment_version=item.enrichment_version,
        )
        logger.info(f"[{item_id}] Regenerating AI content (v{new_version})")

        return await self.enrich(item_id, item.extracted_text, item.title, new_version)

    async def run_job(self, job: EnrichmentJob) -> Optional[KnowledgeItem]:
        """Queue handler."""
        return await self.enrich(
            job.item_id, job.extracted_text, job.title, job.enrichment_version
        )
