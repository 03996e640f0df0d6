"""SQLAlchemy-backed metadata store -- async CRUD for knowledge rows.

Provides SqlAlchemyMetadataStore with the session_factory callable pattern.
Handles serialization between the Pydantic domain models and the
SQLAlchemy models. Every query is filtered by scope_id, and any
SQLAlchemyError is re-raised as MetadataStoreError.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.agent_knowledge.errors import MetadataStoreError
from src.agent_knowledge.models import CollectionRecord, KnowledgeChunk, KnowledgeDocument
from src.agent_knowledge.store.base import MetadataStore
from src.agent_knowledge.store.models import (
    KnowledgeChunkModel,
    KnowledgeCollectionModel,
    KnowledgeDocumentModel,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_uuid(value: str) -> uuid.UUID | None:
    """Parse an id string, None when it is not a UUID."""
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        return None


def _model_to_chunk(model: KnowledgeChunkModel) -> KnowledgeChunk:
    """Convert KnowledgeChunkModel to KnowledgeChunk."""
    return KnowledgeChunk(
        id=str(model.id),
        scope_id=model.scope_id,
        document_id=str(model.document_id) if model.document_id else None,
        title=model.title,
        content=model.content,
        content_type=model.content_type,
        chunk_index=model.chunk_index,
        total_chunks=model.total_chunks,
        language=model.language,
        keywords=list(model.keywords or []),
        has_numbers=bool(model.has_numbers),
        has_table=bool(model.has_table),
        file_type=model.file_type,
        file_size=model.file_size,
        metadata=dict(model.metadata_json or {}),
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _chunk_to_model(chunk: KnowledgeChunk) -> KnowledgeChunkModel:
    """Convert KnowledgeChunk to a new KnowledgeChunkModel."""
    return KnowledgeChunkModel(
        id=uuid.UUID(chunk.id),
        scope_id=chunk.scope_id,
        document_id=uuid.UUID(chunk.document_id) if chunk.document_id else None,
        title=chunk.title,
        content=chunk.content,
        content_type=chunk.content_type,
        chunk_index=chunk.chunk_index,
        total_chunks=chunk.total_chunks,
        language=chunk.language,
        keywords=list(chunk.keywords),
        has_numbers=chunk.has_numbers,
        has_table=chunk.has_table,
        file_type=chunk.file_type,
        file_size=chunk.file_size,
        metadata_json=dict(chunk.metadata),
        created_at=chunk.created_at,
        updated_at=chunk.updated_at,
    )


def _model_to_record(model: KnowledgeCollectionModel) -> CollectionRecord:
    """Convert KnowledgeCollectionModel to CollectionRecord."""
    return CollectionRecord(
        scope_id=model.scope_id,
        collection_name=model.collection_name,
        schema_version=model.schema_version,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
        last_accessed_at=model.last_accessed_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class SqlAlchemyMetadataStore(MetadataStore):
    """Async relational store for documents, chunks and collection records.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with aclosing(self._session_factory()) as sessions:
                async for session in sessions:
                    yield session
        except SQLAlchemyError as exc:
            logger.error("metadata_store.operation_failed", operation=operation, error=str(exc))
            raise MetadataStoreError(f"{operation} failed: {exc}") from exc

    # ── Documents and Chunks ────────────────────────────────────────────────

    async def create_document(self, document: KnowledgeDocument) -> KnowledgeDocument:
        async with self._session("create_document") as session:
            session.add(
                KnowledgeDocumentModel(
                    id=uuid.UUID(document.id),
                    scope_id=document.scope_id,
                    title=document.title,
                    source_filename=document.source_filename,
                    mime_type=document.mime_type,
                    byte_size=document.byte_size,
                    chunk_count=document.chunk_count,
                    created_at=document.created_at,
                )
            )
            await session.commit()
        return document

    async def create_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        """Insert all chunk rows in a single transaction."""
        if not chunks:
            return []
        async with self._session("create_chunks") as session:
            session.add_all([_chunk_to_model(chunk) for chunk in chunks])
            await session.commit()
        logger.debug(
            "metadata_store.chunks_created", count=len(chunks), scope_id=chunks[0].scope_id
        )
        return chunks

    async def get_chunk(self, scope_id: str, chunk_id: str) -> KnowledgeChunk | None:
        chunk_uuid = _as_uuid(chunk_id)
        if chunk_uuid is None:
            return None
        async with self._session("get_chunk") as session:
            stmt = select(KnowledgeChunkModel).where(
                KnowledgeChunkModel.scope_id == scope_id,
                KnowledgeChunkModel.id == chunk_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_chunk(model) if model is not None else None

    async def list_chunks(
        self, scope_id: str, document_id: str | None = None
    ) -> list[KnowledgeChunk]:
        async with self._session("list_chunks") as session:
            stmt = select(KnowledgeChunkModel).where(KnowledgeChunkModel.scope_id == scope_id)
            if document_id is not None:
                document_uuid = _as_uuid(document_id)
                if document_uuid is None:
                    return []
                stmt = stmt.where(KnowledgeChunkModel.document_id == document_uuid)
            stmt = stmt.order_by(
                KnowledgeChunkModel.created_at.desc(), KnowledgeChunkModel.chunk_index
            )
            result = await session.execute(stmt)
            return [_model_to_chunk(m) for m in result.scalars().all()]

    async def update_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        async with self._session("update_chunk") as session:
            stmt = (
                update(KnowledgeChunkModel)
                .where(
                    KnowledgeChunkModel.scope_id == chunk.scope_id,
                    KnowledgeChunkModel.id == uuid.UUID(chunk.id),
                )
                .values(
                    title=chunk.title,
                    content=chunk.content,
                    content_type=chunk.content_type,
                    language=chunk.language,
                    keywords=list(chunk.keywords),
                    has_numbers=chunk.has_numbers,
                    has_table=chunk.has_table,
                    metadata_json=dict(chunk.metadata),
                    updated_at=chunk.updated_at,
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise MetadataStoreError(
                    f"Chunk {chunk.id} not found in scope {chunk.scope_id}"
                )
        return chunk

    async def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> int:
        ids = [u for u in (_as_uuid(c) for c in chunk_ids) if u is not None]
        if not ids:
            return 0
        async with self._session("delete_chunks") as session:
            stmt = delete(KnowledgeChunkModel).where(
                KnowledgeChunkModel.scope_id == scope_id,
                KnowledgeChunkModel.id.in_(ids),
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def delete_document(self, scope_id: str, document_id: str) -> list[str] | None:
        document_uuid = _as_uuid(document_id)
        if document_uuid is None:
            return None
        async with self._session("delete_document") as session:
            found = await session.execute(
                select(KnowledgeDocumentModel.id).where(
                    KnowledgeDocumentModel.scope_id == scope_id,
                    KnowledgeDocumentModel.id == document_uuid,
                )
            )
            if found.scalar_one_or_none() is None:
                return None

            chunk_rows = await session.execute(
                select(KnowledgeChunkModel.id).where(
                    KnowledgeChunkModel.scope_id == scope_id,
                    KnowledgeChunkModel.document_id == document_uuid,
                )
            )
            chunk_ids = [str(row) for row in chunk_rows.scalars().all()]

            await session.execute(
                delete(KnowledgeChunkModel).where(
                    KnowledgeChunkModel.scope_id == scope_id,
                    KnowledgeChunkModel.document_id == document_uuid,
                )
            )
            await session.execute(
                delete(KnowledgeDocumentModel).where(
                    KnowledgeDocumentModel.scope_id == scope_id,
                    KnowledgeDocumentModel.id == document_uuid,
                )
            )
            await session.commit()
            return chunk_ids

    async def purge_scope(self, scope_id: str) -> int:
        async with self._session("purge_scope") as session:
            result = await session.execute(
                delete(KnowledgeChunkModel).where(KnowledgeChunkModel.scope_id == scope_id)
            )
            await session.execute(
                delete(KnowledgeDocumentModel).where(KnowledgeDocumentModel.scope_id == scope_id)
            )
            await session.commit()
            return result.rowcount or 0

    # ── Collection Records ──────────────────────────────────────────────────

    async def get_collection_record(self, scope_id: str) -> CollectionRecord | None:
        async with self._session("get_collection_record") as session:
            model = await session.get(KnowledgeCollectionModel, scope_id)
            return _model_to_record(model) if model is not None else None

    async def save_collection_record(self, record: CollectionRecord) -> CollectionRecord:
        """Insert or update the mapping in one statement, safe under concurrent saves."""
        stmt = pg_insert(KnowledgeCollectionModel).values(
            scope_id=record.scope_id,
            collection_name=record.collection_name,
            schema_version=record.schema_version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[KnowledgeCollectionModel.scope_id],
            set_={
                "collection_name": stmt.excluded.collection_name,
                "schema_version": stmt.excluded.schema_version,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        async with self._session("save_collection_record") as session:
            await session.execute(stmt)
            await session.commit()
        return record

    async def touch_collection(self, scope_id: str, at: datetime) -> None:
        async with self._session("touch_collection") as session:
            await session.execute(
                update(KnowledgeCollectionModel)
                .where(KnowledgeCollectionModel.scope_id == scope_id)
                .values(last_accessed_at=at)
            )
            await session.commit()
