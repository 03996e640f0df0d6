"""Shared fixtures for knowledge pipeline tests.

Provides:
- Settings with small embeddings and no .env lookup
- InMemoryMetadataStore: dict-backed MetadataStore
- MockEmbeddingService: deterministic vectors, no OpenAI calls
- Qdrant in local memory mode, index manager, retrieval engine and pipeline
"""

from __future__ import annotations

import hashlib
from datetime import datetime

import pytest
from qdrant_client import QdrantClient

from src.agent_knowledge.config import KnowledgeSettings
from src.agent_knowledge.errors import MetadataStoreError
from src.agent_knowledge.ingestion.pipeline import KnowledgePipeline
from src.agent_knowledge.ingestion.sparse import SparseVectorBuilder
from src.agent_knowledge.models import CollectionRecord, KnowledgeChunk, KnowledgeDocument
from src.agent_knowledge.retrieval import RetrievalEngine
from src.agent_knowledge.store.base import MetadataStore
from src.agent_knowledge.vector_index import VectorIndexManager, schema_from_settings

DIMENSIONS = 32


# ── In-memory Metadata Store ────────────────────────────────────────────────


class InMemoryMetadataStore(MetadataStore):
    """Dict-backed MetadataStore with the same scope rules as the real one."""

    def __init__(self) -> None:
        self.documents: dict[str, KnowledgeDocument] = {}
        self.chunks: dict[str, KnowledgeChunk] = {}
        self.records: dict[str, CollectionRecord] = {}
        self.touched: dict[str, datetime] = {}

    async def create_document(self, document: KnowledgeDocument) -> KnowledgeDocument:
        self.documents[document.id] = document
        return document

    async def create_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        for chunk in chunks:
            self.chunks[chunk.id] = chunk
        return chunks

    async def get_chunk(self, scope_id: str, chunk_id: str) -> KnowledgeChunk | None:
        chunk = self.chunks.get(chunk_id)
        if chunk is None or chunk.scope_id != scope_id:
            return None
        return chunk

    async def list_chunks(
        self, scope_id: str, document_id: str | None = None
    ) -> list[KnowledgeChunk]:
        return [
            c
            for c in self.chunks.values()
            if c.scope_id == scope_id and (document_id is None or c.document_id == document_id)
        ]

    async def update_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        if await self.get_chunk(chunk.scope_id, chunk.id) is None:
            raise MetadataStoreError(f"Chunk {chunk.id} not found in scope {chunk.scope_id}")
        self.chunks[chunk.id] = chunk
        return chunk

    async def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> int:
        deleted = 0
        for chunk_id in chunk_ids:
            if await self.get_chunk(scope_id, chunk_id) is not None:
                del self.chunks[chunk_id]
                deleted += 1
        return deleted

    async def delete_document(self, scope_id: str, document_id: str) -> list[str] | None:
        document = self.documents.get(document_id)
        if document is None or document.scope_id != scope_id:
            return None
        ids = [c.id for c in await self.list_chunks(scope_id, document_id)]
        for chunk_id in ids:
            del self.chunks[chunk_id]
        del self.documents[document_id]
        return ids

    async def purge_scope(self, scope_id: str) -> int:
        ids = [c.id for c in await self.list_chunks(scope_id)]
        for chunk_id in ids:
            del self.chunks[chunk_id]
        for document_id in [d.id for d in self.documents.values() if d.scope_id == scope_id]:
            del self.documents[document_id]
        return len(ids)

    async def get_collection_record(self, scope_id: str) -> CollectionRecord | None:
        return self.records.get(scope_id)

    async def save_collection_record(self, record: CollectionRecord) -> CollectionRecord:
        self.records[record.scope_id] = record
        return record

    async def touch_collection(self, scope_id: str, at: datetime) -> None:
        self.touched[scope_id] = at


# ── Mock Embedding Service ──────────────────────────────────────────────────


def make_dense(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Deterministic dense vector derived from a SHA-256 digest of text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(digest[i % len(digest)] / 255.0) - 0.5 for i in range(dimensions)]


class MockEmbeddingService:
    """Deterministic stand-in for EmbeddingService.

    Identical texts map to identical vectors, so a query equal to a stored
    text ranks that text first with similarity 1.0.
    """

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.batch_calls: list[list[str]] = []
        self.sequential_calls: list[list[str]] = []
        self.queries: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.queries.append(text)
        return make_dense(text, self.dimensions)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        return [make_dense(t, self.dimensions) for t in texts]

    async def embed_sequential(self, texts: list[str]) -> list[list[float]]:
        self.sequential_calls.append(list(texts))
        return [make_dense(t, self.dimensions) for t in texts]

    async def close(self) -> None:
        return None


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> KnowledgeSettings:
    return KnowledgeSettings(
        _env_file=None,
        openai_api_key="test-key-not-used",
        embedding_dimensions=DIMENSIONS,
    )


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def embedder() -> MockEmbeddingService:
    return MockEmbeddingService()


@pytest.fixture
def qdrant():
    """Qdrant in local memory mode, discarded after the test."""
    client = QdrantClient(":memory:")
    yield client
    client.close()


@pytest.fixture
def index(qdrant, metadata_store, settings) -> VectorIndexManager:
    return VectorIndexManager(
        qdrant,
        metadata_store,
        schema=schema_from_settings(settings),
        collection_prefix=settings.collection_prefix,
        allow_destructive_migration=settings.allow_destructive_migration,
    )


@pytest.fixture
def retrieval(index) -> RetrievalEngine:
    return RetrievalEngine(index)


@pytest.fixture
async def pipeline(settings, metadata_store, index, embedder, retrieval):
    """KnowledgePipeline over the in-memory store and local Qdrant."""
    knowledge = KnowledgePipeline(
        settings,
        store=metadata_store,
        index=index,
        embedder=embedder,
        retrieval=retrieval,
        sparse=SparseVectorBuilder(buckets=settings.sparse_buckets),
    )
    yield knowledge
    await knowledge.tasks.drain()
