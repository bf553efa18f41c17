"""
Knowledge Item Repository.

Persistence gateway for KnowledgeItem records. Both implementations
enforce the same write rules:

- fields set at ingestion are immutable
- status changes must follow ALLOWED_STATUS_TRANSITIONS
- re-entering ``processing`` from a terminal state clears the
  enrichment outputs
- ``expected_enrichment_version`` turns an update into a compare-and-set
  that raises StaleEnrichmentError when another run got there first
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import get_shared_session_factory
from app.core.exceptions import ItemNotFoundError, PersistenceError, StaleEnrichmentError
from app.models.database import KnowledgeItemModel
from app.models.knowledge_item import (
    ENRICHMENT_FIELDS,
    IMMUTABLE_FIELDS,
    KnowledgeItem,
    ProcessingStatus,
    is_valid_transition,
    utc_now,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})


@dataclass
class SizeTotals:
    """Raw size sums used by the compression stats rollup."""
    item_count: int = 0
    total_original_size: int = 0
    total_compressed_size: int = 0


def prepare_patch(item_id: str, current_status: ProcessingStatus, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial update against the write rules.

    Returns the patch to apply (with enrichment outputs cleared when the
    item re-enters processing) or raises PersistenceError.
    """
    immutable = IMMUTABLE_FIELDS.intersection(fields)
    if immutable:
        raise PersistenceError(
            f"Cannot update immutable field(s) {sorted(immutable)} on {item_id}"
        )

    unknown = set(fields) - set(KnowledgeItem.model_fields)
    if unknown:
        raise PersistenceError(f"Unknown field(s) {sorted(unknown)} for {item_id}")

    patch = dict(fields)
    patch.pop("updated_at", None)

    if "processing_status" in patch:
        try:
            target = ProcessingStatus(patch["processing_status"])
        except ValueError as e:
            raise PersistenceError(f"Invalid processing status for {item_id}: {e}") from e

        if not is_valid_transition(current_status, target):
            raise PersistenceError(
                f"Invalid status transition for {item_id}: "
                f"{ProcessingStatus(current_status).value} -> {target.value}"
            )

        patch["processing_status"] = target
        if target == ProcessingStatus.PROCESSING and current_status in TERMINAL_STATUSES:
            for name in ENRICHMENT_FIELDS + ("processing_error",):
                patch.setdefault(name, None)

    return patch


class KnowledgeItemRepository(Protocol):
    """
    Interface for knowledge item persistence.

    Every method raises PersistenceError on backend failure.
    """

    async def create(self, item: KnowledgeItem) -> KnowledgeItem:
        ...

    async def update_by_id(
        self,
        item_id: str,
        fields: Mapping[str, Any],
        *,
        expected_enrichment_version: Optional[int] = None,
    ) -> KnowledgeItem:
        """Partial update. Raises ItemNotFoundError for a missing id."""
        ...

    async def get_by_id(self, item_id: str) -> Optional[KnowledgeItem]:
        ...

    async def list_by_status(self, status: ProcessingStatus) -> List[KnowledgeItem]:
        ...

    async def get_size_totals(self, owner_id: Optional[str] = None) -> SizeTotals:
        ...


class InMemoryKnowledgeItemRepository:
    """
    In-memory implementation of the knowledge item repository.

    Used for development and testing. Production should use the
    PostgreSQL-backed implementation.
    """

    def __init__(self):
        self._items: Dict[str, KnowledgeItem] = {}
        self._lock = asyncio.Lock()

    async def create(self, item: KnowledgeItem) -> KnowledgeItem:
        async with self._lock:
            if item.id in self._items:
                raise PersistenceError(f"Knowledge item already exists: {item.id}")
            self._items[item.id] = item.model_copy(deep=True)
        logger.info(f"Created knowledge item {item.id}")
        return item.model_copy(deep=True)

    async def update_by_id(
        self,
        item_id: str,
        fields: Mapping[str, Any],
        *,
        expected_enrichment_version: Optional[int] = None,
    ) -> KnowledgeItem:
        async with self._lock:
            current = self._items.get(item_id)
            if current is None:
                raise ItemNotFoundError(item_id)

            if (
                expected_enrichment_version is not None
                and current.enrichment_version != expected_enrichment_version
            ):
                raise StaleEnrichmentError(
                    item_id, expected_enrichment_version, current.enrichment_version
                )

            patch = prepare_patch(item_id, current.processing_status, fields)
            data = current.model_dump(exclude={"compression_ratio"})
            data.update(patch)
            data["updated_at"] = utc_now()

            try:
                updated = KnowledgeItem.model_validate(data)
            except ValueError as e:
                raise PersistenceError(f"Invalid update for {item_id}: {e}") from e

            self._items[item_id] = updated

        logger.debug(f"Updated knowledge item {item_id}: {sorted(patch)}")
        return updated.model_copy(deep=True)

    async def get_by_id(self, item_id: str) -> Optional[KnowledgeItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def list_by_status(self, status: ProcessingStatus) -> List[KnowledgeItem]:
        status = ProcessingStatus(status)
        return [
            item.model_copy(deep=True)
            for item in self._items.values()
            if item.processing_status == status
        ]

    async def get_size_totals(self, owner_id: Optional[str] = None) -> SizeTotals:
        items = [i for i in self._items.values() if owner_id is None or i.owner_id == owner_id]
        return SizeTotals(
            item_count=len(items),
            total_original_size=sum(i.file_size for i in items),
            total_compressed_size=sum(i.compressed_size for i in items),
        )

    def count(self) -> int:
        """Get total number of stored items."""
        return len(self._items)

    def clear(self) -> None:
        """Clear all items (for testing)."""
        self._items.clear()


def _to_domain(row: KnowledgeItemModel) -> KnowledgeItem:
    return KnowledgeItem(
        id=row.id,
        owner_id=row.owner_id,
        category_id=row.category_id,
        custom_category_type=row.custom_category_type,
        title=row.title,
        description=row.description,
        file_name=row.file_name,
        mime_type=row.mime_type,
        file_size=row.file_size,
        compressed_size=row.compressed_size,
        file_path=row.file_path,
        original_file_path=row.original_file_path,
        compression_type=row.compression_type,
        quality=row.quality,
        preserved_for_ai=bool(row.preserved_for_ai),
        extracted_text=row.extracted_text,
        metadata=row.item_metadata or {},
        summary=row.summary,
        key_points=row.key_points,
        ai_analysis=row.ai_analysis,
        processing_error=row.processing_error,
        processing_status=ProcessingStatus(row.processing_status),
        enrichment_version=row.enrichment_version or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_row(item: KnowledgeItem) -> KnowledgeItemModel:
    return KnowledgeItemModel(
        id=item.id,
        owner_id=item.owner_id,
        category_id=item.category_id,
        custom_category_type=item.custom_category_type,
        title=item.title,
        description=item.description,
        file_name=item.file_name,
        mime_type=item.mime_type,
        file_size=item.file_size,
        compressed_size=item.compressed_size,
        file_path=item.file_path,
        original_file_path=item.original_file_path,
        compression_type=item.compression_type,
        compression_ratio=item.compression_ratio,
        quality=item.quality,
        preserved_for_ai=item.preserved_for_ai,
        extracted_text=item.extracted_text,
        item_metadata=dict(item.metadata),
        summary=item.summary,
        key_points=item.key_points,
        ai_analysis=item.ai_analysis,
        processing_error=item.processing_error,
        processing_status=item.processing_status.value,
        enrichment_version=item.enrichment_version,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _to_columns(patch: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, value in patch.items():
        if name == "metadata":
            values["item_metadata"] = dict(value or {})
        elif name == "processing_status":
            values[name] = ProcessingStatus(value).value
        else:
            values[name] = value
    return values


class SqlKnowledgeItemRepository:
    """
    SQLAlchemy implementation on the knowledge_items table.

    Uses the shared session factory unless one is injected. The enrichment
    compare-and-set is a conditional UPDATE on enrichment_version.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_shared_session_factory()
        return self._session_factory

    async def create(self, item: KnowledgeItem) -> KnowledgeItem:
        try:
            with self.session_factory() as session:
                session.add(_to_row(item))
                session.commit()
            logger.info(f"Created knowledge item {item.id}")
            return item
        except IntegrityError as e:
            raise PersistenceError(f"Failed to create knowledge item {item.id}: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to create knowledge item {item.id}: {e}")
            raise PersistenceError(f"Failed to create knowledge item {item.id}: {e}") from e

    async def update_by_id(
        self,
        item_id: str,
        fields: Mapping[str, Any],
        *,
        expected_enrichment_version: Optional[int] = None,
    ) -> KnowledgeItem:
        try:
            with self.session_factory() as session:
                row = session.get(KnowledgeItemModel, item_id)
                if row is None:
                    raise ItemNotFoundError(item_id)

                if (
                    expected_enrichment_version is not None
                    and row.enrichment_version != expected_enrichment_version
                ):
                    raise StaleEnrichmentError(
                        item_id, expected_enrichment_version, row.enrichment_version
                    )

                patch = prepare_patch(item_id, ProcessingStatus(row.processing_status), fields)
                values = _to_columns(patch)
                values["updated_at"] = utc_now()

                stmt = update(KnowledgeItemModel).where(KnowledgeItemModel.id == item_id)
                if expected_enrichment_version is not None:
                    stmt = stmt.where(
                        KnowledgeItemModel.enrichment_version == expected_enrichment_version
                    )
                result = session.execute(
                    stmt.values(**values).execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    session.rollback()
                    actual = session.scalar(
                        select(KnowledgeItemModel.enrichment_version)
                        .where(KnowledgeItemModel.id == item_id)
                    )
                    if actual is None:
                        raise ItemNotFoundError(item_id)
                    raise StaleEnrichmentError(item_id, expected_enrichment_version, actual)

                session.commit()
                session.refresh(row)
                logger.debug(f"Updated knowledge item {item_id}: {sorted(patch)}")
                return _to_domain(row)

        except (ItemNotFoundError, PersistenceError):
            raise
        except ValueError as e:
            raise PersistenceError(f"Invalid update for {item_id}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to update knowledge item {item_id}: {e}")
            raise PersistenceError(f"Failed to update knowledge item {item_id}: {e}") from e

    async def get_by_id(self, item_id: str) -> Optional[KnowledgeItem]:
        try:
            with self.session_factory() as session:
                row = session.get(KnowledgeItemModel, item_id)
                return _to_domain(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to get knowledge item {item_id}: {e}")
            raise PersistenceError(f"Failed to get knowledge item {item_id}: {e}") from e

    async def list_by_status(self, status: ProcessingStatus) -> List[KnowledgeItem]:
        status = ProcessingStatus(status)
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(KnowledgeItemModel)
                    .where(KnowledgeItemModel.processing_status == status.value)
                    .order_by(KnowledgeItemModel.created_at)
                ).all()
                return [_to_domain(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list {status.value} knowledge items: {e}")
            raise PersistenceError(f"Failed to list knowledge items: {e}") from e

    async def get_size_totals(self, owner_id: Optional[str] = None) -> SizeTotals:
        stmt = select(
            func.count(KnowledgeItemModel.id),
            func.coalesce(func.sum(KnowledgeItemModel.file_size), 0),
            func.coalesce(func.sum(KnowledgeItemModel.compressed_size), 0),
        )
        if owner_id is not None:
            stmt = stmt.where(KnowledgeItemModel.owner_id == owner_id)

        try:
            with self.session_factory() as session:
                count, original, compressed = session.execute(stmt).one()
        except SQLAlchemyError as e:
            logger.error(f"Failed to compute size totals: {e}")
            raise PersistenceError(f"Failed to compute size totals: {e}") from e

        return SizeTotals(
            item_count=int(count or 0),
            total_original_size=int(original or 0),
            total_compressed_size=int(compressed or 0),
        )
