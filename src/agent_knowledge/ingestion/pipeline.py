"""Pipeline-facing API: ingestion, maintenance and search of scoped knowledge.

Orchestrates the complete flow:

    analyze() -> RecursiveChunker.chunk() -> EmbeddingService.embed_batch()
    + SparseVectorBuilder.build() -> VectorIndexManager.ensure_collection()
    -> MetadataStore.create_chunks() -> VectorIndexManager.upsert_points()

Write ordering keeps the relational rows and the vector points in step:
embeddings are computed before anything is written, rows are written in one
transaction, and if the vector upsert then fails the rows are deleted again
before the error propagates. Deletes remove rows first and tolerate a
failed vector delete (the orphaned point can no longer be resolved to a
row and is overwritten or dropped on the next migration).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from src.agent_knowledge.config import KnowledgeSettings
from src.agent_knowledge.embeddings import EmbeddingService
from src.agent_knowledge.errors import InvalidContentError, KnowledgeError
from src.agent_knowledge.ingestion.chunker import RecursiveChunker
from src.agent_knowledge.ingestion.sparse import SparseVectorBuilder
from src.agent_knowledge.models import (
    ChunkPatch,
    ChunkView,
    ContentType,
    EmbeddedChunk,
    FileMeta,
    KnowledgeChunk,
    KnowledgeDocument,
    KnowledgeEntryCreate,
)
from src.agent_knowledge.retrieval import RetrievalEngine, expand_query
from src.agent_knowledge.store.base import MetadataStore
from src.agent_knowledge.tasks import BackgroundTasks
from src.agent_knowledge.text_analysis import analyze, extract_keywords
from src.agent_knowledge.vector_index import EnsureOutcome, VectorIndexManager

logger = structlog.get_logger(__name__)

GLOBAL_KEYWORD_LIMIT = 10
CHUNK_KEYWORD_LIMIT = 5


def _validate(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidContentError(str(exc)) from exc


def chunk_title(title: str, index: int) -> str:
    return f"{title} - Part {index + 1}"


def contextual_text(title: str, index: int, total: int, content: str) -> str:
    """Text embedded for a document chunk: the chunk framed by its position."""
    return f"Document: {title}\n\nPart {index + 1}/{total}\n\n{content}"


def merge_keywords(global_keywords: list[str], chunk_keywords: list[str]) -> list[str]:
    """Leading document keywords followed by the chunk's own, de-duplicated."""
    merged = global_keywords[:GLOBAL_KEYWORD_LIMIT] + chunk_keywords[:CHUNK_KEYWORD_LIMIT]
    return list(dict.fromkeys(merged))


# ── Knowledge Pipeline ──────────────────────────────────────────────────────


class KnowledgePipeline:
    """Entry point for ingesting, editing, deleting and searching knowledge.

    Every operation takes the scope_id of the owning agent configuration and
    never reads or writes outside of it.

    Args:
        settings: Knowledge settings (chunking, batching, search limits).
        store: Relational metadata store.
        index: Vector index manager.
        embedder: Dense embedding service.
        retrieval: Retrieval engine over the index.
        sparse: Sparse vector builder; None disables hybrid vectors.
        chunker: Text chunker; defaults to the configured size/overlap.
        tasks: Tracker for fire-and-forget work.
    """

    def __init__(
        self,
        settings: KnowledgeSettings,
        store: MetadataStore,
        index: VectorIndexManager,
        embedder: EmbeddingService,
        retrieval: RetrievalEngine,
        sparse: SparseVectorBuilder | None = None,
        chunker: RecursiveChunker | None = None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._index = index
        self._embedder = embedder
        self._retrieval = retrieval
        self._sparse = sparse if index.schema.has_sparse else None
        self._chunker = chunker or RecursiveChunker(
            chunk_size=settings.chunk_size, overlap=settings.chunk_overlap
        )
        self._tasks = tasks or BackgroundTasks()

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    # ── Ingestion ───────────────────────────────────────────────────────────

    async def ingest_text(
        self,
        scope_id: str,
        title: str,
        content: str,
        content_type: ContentType = "text",
    ) -> list[KnowledgeChunk]:
        """Store content as a single standalone chunk (text or FAQ entry).

        Raises:
            InvalidContentError: If title, content or content_type is invalid.
        """
        entry: KnowledgeEntryCreate = _validate(
            KnowledgeEntryCreate,
            {"title": title, "content": content, "content_type": content_type},
        )
        analysis = analyze(entry.content)
        chunk = KnowledgeChunk(
            scope_id=scope_id,
            title=entry.title,
            content=entry.content,
            content_type=entry.content_type,
            language=analysis.language,
            keywords=analysis.keywords,
            has_numbers=analysis.has_numbers,
            has_table=analysis.has_table,
        )

        embedded = await self._embed([chunk], [entry.content])
        await self._index.ensure_collection(scope_id)
        await self._store.create_chunks([chunk])
        try:
            await self._index.upsert_points(scope_id, embedded)
        except Exception:
            await self._compensate(scope_id, chunk_ids=[chunk.id])
            raise

        logger.info(
            "knowledge.text_ingested",
            scope_id=scope_id,
            chunk_id=chunk.id,
            language=chunk.language,
        )
        return [chunk]

    async def ingest_chunks(
        self,
        scope_id: str,
        title: str,
        content: str,
        content_type: ContentType = "document",
        file_meta: FileMeta | None = None,
    ) -> list[KnowledgeChunk]:
        """Chunk a document's extracted text and store every chunk.

        All chunks are embedded in one batched call (or sequentially with a
        delay when batching is disabled) before anything is written.

        Returns:
            The stored chunks in document order.

        Raises:
            InvalidContentError: On invalid input or an oversized upload.
            EmbeddingProviderError: If embedding fails (nothing written).
            VectorStoreError: If the upsert fails (rows compensated).
        """
        entry: KnowledgeEntryCreate = _validate(
            KnowledgeEntryCreate,
            {"title": title, "content": content, "content_type": content_type},
        )
        if file_meta is not None and file_meta.size > self._settings.max_upload_bytes:
            raise InvalidContentError(
                f"File {file_meta.filename} is {file_meta.size} bytes, "
                f"limit is {self._settings.max_upload_bytes}"
            )

        analysis = analyze(entry.content)
        logger.info(
            "knowledge.ingest_started",
            scope_id=scope_id,
            title=entry.title,
            language=analysis.language,
            content_length=analysis.char_count,
            keyword_count=len(analysis.keywords),
        )

        pieces = list(self._chunker.chunk(entry.content))
        total = len(pieces)
        document = KnowledgeDocument(
            scope_id=scope_id,
            title=entry.title,
            source_filename=file_meta.filename if file_meta else None,
            mime_type=file_meta.mime_type if file_meta else None,
            byte_size=file_meta.size if file_meta else None,
            chunk_count=total,
        )
        extra = dict(file_meta.extra) if file_meta else {}

        chunks: list[KnowledgeChunk] = []
        texts: list[str] = []
        for i, piece in enumerate(pieces):
            chunks.append(
                KnowledgeChunk(
                    scope_id=scope_id,
                    document_id=document.id,
                    title=chunk_title(entry.title, i),
                    content=piece,
                    content_type=entry.content_type,
                    chunk_index=i,
                    total_chunks=total,
                    language=analysis.language,
                    keywords=merge_keywords(analysis.keywords, extract_keywords(piece)),
                    has_numbers=analysis.has_numbers,
                    has_table=analysis.has_table,
                    file_type=document.mime_type,
                    file_size=document.byte_size,
                    metadata={
                        **extra,
                        "chunk_size": len(piece),
                        "estimated_pages": analysis.estimated_pages,
                    },
                )
            )
            texts.append(contextual_text(entry.title, i, total, piece))

        embedded = await self._embed(chunks, texts)
        await self._index.ensure_collection(scope_id)

        await self._store.create_document(document)
        try:
            await self._store.create_chunks(chunks)
            await self._index.upsert_points(scope_id, embedded)
        except Exception:
            await self._compensate(scope_id, document_id=document.id)
            raise

        logger.info(
            "knowledge.ingest_completed",
            scope_id=scope_id,
            document_id=document.id,
            chunk_count=total,
        )
        return chunks

    async def _embed(
        self, chunks: list[KnowledgeChunk], texts: list[str]
    ) -> list[EmbeddedChunk]:
        if self._settings.batch_embeddings:
            dense = await self._embedder.embed_batch(texts)
        else:
            dense = await self._embedder.embed_sequential(texts)

        if self._sparse is not None:
            sparse = self._sparse.build_batch(texts)
        else:
            sparse = [None] * len(texts)

        return [
            EmbeddedChunk(chunk=chunk, dense=vector, sparse=sv)
            for chunk, vector, sv in zip(chunks, dense, sparse)
        ]

    async def _compensate(
        self,
        scope_id: str,
        document_id: str | None = None,
        chunk_ids: list[str] | None = None,
    ) -> None:
        """Remove rows written by an ingestion whose vector upsert failed."""
        try:
            if document_id is not None:
                await self._store.delete_document(scope_id, document_id)
            if chunk_ids:
                await self._store.delete_chunks(scope_id, chunk_ids)
        except KnowledgeError as exc:
            logger.error(
                "knowledge.compensation_failed",
                scope_id=scope_id,
                document_id=document_id,
                chunk_ids=chunk_ids,
                error=str(exc),
            )
            return
        logger.warning(
            "knowledge.ingest_compensated",
            scope_id=scope_id,
            document_id=document_id,
            chunk_ids=chunk_ids,
        )

    # ── Maintenance ─────────────────────────────────────────────────────────

    async def get_chunk(self, chunk_id: str, scope_id: str) -> KnowledgeChunk | None:
        return await self._store.get_chunk(scope_id, chunk_id)

    async def list_chunks(
        self, scope_id: str, document_id: str | None = None
    ) -> list[KnowledgeChunk]:
        return await self._store.list_chunks(scope_id, document_id)

    async def update_chunk(
        self,
        chunk_id: str,
        scope_id: str,
        patch: ChunkPatch | dict[str, Any],
    ) -> KnowledgeChunk | None:
        """Apply a partial update, re-deriving analysis and re-embedding.

        Returns:
            The updated chunk, or None if it does not exist in the scope or
            was purged by a collection migration before the write.
        """
        if isinstance(patch, dict):
            patch = _validate(ChunkPatch, patch)

        existing = await self._store.get_chunk(scope_id, chunk_id)
        if existing is None:
            return None

        changes = patch.model_dump(exclude_none=True)
        if not changes:
            return existing

        if "content" in changes:
            analysis = analyze(changes["content"])
            changes.update(
                language=analysis.language,
                keywords=analysis.keywords,
                has_numbers=analysis.has_numbers,
                has_table=analysis.has_table,
            )
        updated = existing.model_copy(
            update={**changes, "updated_at": datetime.now(timezone.utc)}
        )

        embedded = await self._embed([updated], [updated.content])
        if await self._index.ensure_collection(scope_id) == EnsureOutcome.migrated:
            logger.warning(
                "knowledge.update_dropped_by_migration", scope_id=scope_id, chunk_id=chunk_id
            )
            return None
        await self._store.update_chunk(updated)
        try:
            await self._index.upsert_points(scope_id, embedded)
        except Exception:
            await self._store.update_chunk(existing)
            logger.warning(
                "knowledge.update_reverted", scope_id=scope_id, chunk_id=chunk_id
            )
            raise

        logger.info(
            "knowledge.chunk_updated",
            scope_id=scope_id,
            chunk_id=chunk_id,
            fields=sorted(patch.model_dump(exclude_none=True)),
        )
        return updated

    async def delete_chunk(self, chunk_id: str, scope_id: str) -> bool:
        """Delete a chunk row and its vector point.

        Returns:
            False if the chunk does not exist in the scope.
        """
        deleted = await self._store.delete_chunks(scope_id, [chunk_id])
        if deleted == 0:
            return False

        try:
            await self._index.delete_points(scope_id, [chunk_id])
        except KnowledgeError as exc:
            logger.warning(
                "knowledge.vector_delete_failed",
                scope_id=scope_id,
                chunk_id=chunk_id,
                error=str(exc),
            )

        logger.info("knowledge.chunk_deleted", scope_id=scope_id, chunk_id=chunk_id)
        return True

    async def delete_document(self, document_id: str, scope_id: str) -> bool:
        """Delete a document with all of its chunks and points."""
        chunk_ids = await self._store.delete_document(scope_id, document_id)
        if chunk_ids is None:
            return False

        try:
            await self._index.delete_by_filter(scope_id, document_id)
        except KnowledgeError as exc:
            logger.warning(
                "knowledge.vector_delete_failed",
                scope_id=scope_id,
                document_id=document_id,
                error=str(exc),
            )

        logger.info(
            "knowledge.document_deleted",
            scope_id=scope_id,
            document_id=document_id,
            chunk_count=len(chunk_ids),
        )
        return True

    async def migrate_collection(self, scope_id: str) -> int:
        """Rebuild the scope's collection; its chunks must be re-ingested."""
        return await self._index.migrate_collection(scope_id)

    # ── Search ──────────────────────────────────────────────────────────────

    async def search(
        self,
        scope_id: str,
        query_text: str,
        limit: int | None = None,
        expand: bool = False,
    ) -> list[ChunkView]:
        """Find the scope's chunks most similar to query_text.

        Args:
            scope_id: Scope to search.
            query_text: Natural language query.
            limit: Result count, clamped to [1, max_search_limit].
            expand: Append English synonyms of Portuguese terms first.
        """
        if not query_text or not query_text.strip():
            raise InvalidContentError("query must not be blank")

        limit = limit or self._settings.default_search_limit
        limit = max(1, min(limit, self._settings.max_search_limit))
        text = expand_query(query_text) if expand else query_text

        query_vector = await self._embedder.embed(text)
        query_sparse = self._sparse.build(text) if self._sparse is not None else None
        results = await self._retrieval.search(
            scope_id, query_vector, limit, query_sparse=query_sparse
        )

        if results:
            self._tasks.spawn(
                self._store.touch_collection(scope_id, datetime.now(timezone.utc)),
                name=f"touch_collection:{scope_id}",
            )
        return results
