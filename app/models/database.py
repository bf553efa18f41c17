"""
SQLAlchemy database models for the Knowledge Vault service.

This module defines the database schema using SQLAlchemy ORM
for knowledge items.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class KnowledgeItemModel(Base):
    """
    SQLAlchemy model for the knowledge_items table.

    compression_ratio is stored only so that rollups can be computed
    in SQL; it is always written from the sizes at creation time.
    """
    __tablename__ = "knowledge_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    custom_category_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # File information
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    compressed_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    original_file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Compression metadata
    compression_type: Mapped[str] = mapped_column(String(64), nullable=False)
    compression_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    quality: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preserved_for_ai: Mapped[bool] = mapped_column(Boolean, default=False)

    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    # Enrichment outputs
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key_points: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    ai_analysis: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processing_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    enrichment_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="check_processing_status",
        ),
        CheckConstraint("file_size > 0", name="check_file_size_positive"),
    )
