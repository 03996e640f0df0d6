"""SQLAlchemy persistence models for the knowledge store.

Three tables in the "knowledge" schema:
- KnowledgeDocumentModel: one row per uploaded document
- KnowledgeChunkModel: one row per chunk; id is also the vector point id
- KnowledgeCollectionModel: scope -> collection mapping with schema version
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

knowledge_metadata = MetaData(schema="knowledge")


class KnowledgeBase(DeclarativeBase):
    """Declarative base for knowledge tables."""

    metadata = knowledge_metadata


class KnowledgeDocumentModel(KnowledgeBase):
    """Uploaded document grouping a contiguous run of chunks."""

    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_scope", "scope_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    source_filename: Mapped[str | None] = mapped_column(String(500), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(200), nullable=True)
    byte_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class KnowledgeChunkModel(KnowledgeBase):
    """Canonical chunk record. Deleted together with its vector point."""

    __tablename__ = "chunks"
    __table_args__ = (
        Index("ix_chunks_scope", "scope_id"),
        Index("ix_chunks_document", "document_id", "chunk_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("knowledge.documents.id", ondelete="CASCADE"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(600), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), default="text")
    chunk_index: Mapped[int] = mapped_column(Integer, default=0)
    total_chunks: Mapped[int] = mapped_column(Integer, default=1)
    language: Mapped[str] = mapped_column(String(10), default="unknown")
    keywords: Mapped[list] = mapped_column(JSONB, default=list)
    has_numbers: Mapped[bool] = mapped_column(Boolean, default=False)
    has_table: Mapped[bool] = mapped_column(Boolean, default=False)
    file_type: Mapped[str | None] = mapped_column(String(200), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class KnowledgeCollectionModel(KnowledgeBase):
    """Vector collection owned by a scope and the schema version it was built with."""

    __tablename__ = "collections"

    scope_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    collection_name: Mapped[str] = mapped_column(String(200), nullable=False)
    schema_version: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
