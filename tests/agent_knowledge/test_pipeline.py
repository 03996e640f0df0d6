"""End-to-end tests for KnowledgePipeline.

Uses MockEmbeddingService (deterministic vectors, no OpenAI calls), the
in-memory metadata store and Qdrant local memory mode.

Tests cover:
- Standalone text and chunked document ingestion
- Row/point consistency on success and on failed upserts
- Update, delete and document delete
- Scoped search, limit clamping and last-access tracking
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.agent_knowledge.errors import (
    EmbeddingProviderError,
    InvalidContentError,
    VectorStoreError,
)
from src.agent_knowledge.models import ChunkPatch, CollectionRecord, FileMeta

SCOPE = "scope-one"
OTHER = "scope-two"


def _point_ids(qdrant, index, scope_id: str) -> set[str]:
    points, _ = qdrant.scroll(index.collection_name(scope_id), limit=100)
    return {str(p.id) for p in points}


# ── Ingestion ───────────────────────────────────────────────────────────────


class TestIngestText:
    async def test_single_chunk_stored_in_both_stores(
        self, pipeline, metadata_store, qdrant, index
    ):
        chunks = await pipeline.ingest_text(
            SCOPE, "Opening hours", "We are open from 9 to 18, the installation team too."
        )

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.chunk_index == 0
        assert chunk.total_chunks == 1
        assert chunk.document_id is None
        assert chunk.language == "en"
        assert "installation" in chunk.keywords
        assert await metadata_store.get_chunk(SCOPE, chunk.id) == chunk
        assert _point_ids(qdrant, index, SCOPE) == {chunk.id}

    @pytest.mark.parametrize(
        "title,content,content_type",
        [
            ("Title", "", "text"),
            ("Title", "   \n ", "text"),
            ("", "content", "text"),
            ("x" * 501, "content", "text"),
            ("Title", "content", "video"),
        ],
    )
    async def test_invalid_input_rejected_before_writes(
        self, pipeline, metadata_store, embedder, title, content, content_type
    ):
        with pytest.raises(InvalidContentError):
            await pipeline.ingest_text(SCOPE, title, content, content_type)

        assert metadata_store.chunks == {}
        assert embedder.batch_calls == []


class TestIngestChunks:
    async def test_2000_chars_gives_three_chunks(self, pipeline, metadata_store, qdrant, index):
        chunks = await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)

        assert len(chunks) == 3
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert all(c.total_chunks == 3 for c in chunks)
        assert [c.title for c in chunks] == ["Manual - Part 1", "Manual - Part 2", "Manual - Part 3"]
        assert len({c.document_id for c in chunks}) == 1
        assert _point_ids(qdrant, index, SCOPE) == {c.id for c in chunks}
        assert len(metadata_store.documents) == 1

    async def test_single_batched_embedding_call_with_context(self, pipeline, embedder):
        await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)

        assert len(embedder.batch_calls) == 1
        texts = embedder.batch_calls[0]
        assert len(texts) == 3
        assert texts[1].startswith("Document: Manual\n\nPart 2/3\n\n")

    async def test_sequential_embedding_when_batching_disabled(self, pipeline, embedder, settings):
        settings.batch_embeddings = False

        await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)

        assert embedder.batch_calls == []
        assert len(embedder.sequential_calls[0]) == 3

    async def test_file_meta_copied_to_chunks(self, pipeline, metadata_store):
        meta = FileMeta(
            filename="manual.pdf",
            mime_type="application/pdf",
            size=2048,
            extra={"uploaded_by": "ops"},
        )

        chunks = await pipeline.ingest_chunks(SCOPE, "Manual", "Setup guide. " * 10, file_meta=meta)

        document = metadata_store.documents[chunks[0].document_id]
        assert document.source_filename == "manual.pdf"
        assert document.chunk_count == len(chunks)
        assert chunks[0].file_type == "application/pdf"
        assert chunks[0].file_size == 2048
        assert chunks[0].metadata["uploaded_by"] == "ops"

    async def test_oversized_upload_rejected(self, pipeline, settings):
        meta = FileMeta(filename="huge.pdf", size=settings.max_upload_bytes + 1)
        with pytest.raises(InvalidContentError, match="huge.pdf"):
            await pipeline.ingest_chunks(SCOPE, "Huge", "content", file_meta=meta)

    async def test_keywords_merge_document_and_chunk(self, pipeline):
        content = "The equipment needs installation. " * 40
        chunks = await pipeline.ingest_chunks(SCOPE, "Guide", content)
        for chunk in chunks:
            assert len(chunk.keywords) == len(set(chunk.keywords))
            assert "equipment" in chunk.keywords

    async def test_failed_upsert_leaves_no_rows(self, pipeline, index, metadata_store):
        with patch.object(
            index, "upsert_points", AsyncMock(side_effect=VectorStoreError("down"))
        ):
            with pytest.raises(VectorStoreError):
                await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)

        assert metadata_store.chunks == {}
        assert metadata_store.documents == {}

    async def test_failed_embedding_writes_nothing(self, pipeline, embedder, metadata_store, index):
        embedder.embed_batch = AsyncMock(side_effect=EmbeddingProviderError("quota"))

        with pytest.raises(EmbeddingProviderError):
            await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)

        assert metadata_store.chunks == {}
        assert not await index.collection_exists(SCOPE)


# ── Maintenance ─────────────────────────────────────────────────────────────


class TestUpdateChunk:
    async def test_content_update_reanalyzes_and_reembeds(self, pipeline, retrieval):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")

        updated = await pipeline.update_chunk(
            chunk.id, SCOPE, ChunkPatch(content="O equipamento não está na sala e a instalação é simples.")
        )

        assert updated is not None
        assert updated.language == "pt"
        assert "instalação" in updated.keywords
        assert updated.title == "Hours"
        results = await pipeline.search(SCOPE, updated.content, limit=1)
        assert results[0].content == updated.content
        assert results[0].language == "pt"

    async def test_dict_patch_validated(self, pipeline):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")
        with pytest.raises(InvalidContentError):
            await pipeline.update_chunk(chunk.id, SCOPE, {"content_type": "video"})

    async def test_missing_or_foreign_chunk_returns_none(self, pipeline):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")
        assert await pipeline.update_chunk(chunk.id, OTHER, ChunkPatch(title="x")) is None
        assert await pipeline.update_chunk("missing", SCOPE, ChunkPatch(title="x")) is None

    async def test_failed_upsert_restores_row(self, pipeline, index, metadata_store):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")

        with patch.object(
            index, "upsert_points", AsyncMock(side_effect=VectorStoreError("down"))
        ):
            with pytest.raises(VectorStoreError):
                await pipeline.update_chunk(chunk.id, SCOPE, ChunkPatch(title="Changed"))

        assert (await metadata_store.get_chunk(SCOPE, chunk.id)).title == "Hours"

    async def test_update_after_migration_purge_returns_none(
        self, pipeline, index, metadata_store, qdrant
    ):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")
        metadata_store.records[SCOPE] = CollectionRecord(
            scope_id=SCOPE,
            collection_name=index.collection_name(SCOPE),
            schema_version="v1:unnamed-1536-cosine:none",
        )

        result = await pipeline.update_chunk(chunk.id, SCOPE, ChunkPatch(title="Changed"))

        assert result is None
        assert await metadata_store.get_chunk(SCOPE, chunk.id) is None
        assert _point_ids(qdrant, index, SCOPE) == set()


class TestDelete:
    async def test_delete_chunk_removes_row_and_point(self, pipeline, metadata_store, qdrant, index):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")

        assert await pipeline.delete_chunk(chunk.id, SCOPE) is True

        assert await metadata_store.get_chunk(SCOPE, chunk.id) is None
        assert _point_ids(qdrant, index, SCOPE) == set()

    async def test_delete_chunk_of_other_scope_is_false(self, pipeline, metadata_store):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")
        assert await pipeline.delete_chunk(chunk.id, OTHER) is False
        assert await metadata_store.get_chunk(SCOPE, chunk.id) is not None

    async def test_failed_vector_delete_tolerated(self, pipeline, index, metadata_store):
        [chunk] = await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")

        with patch.object(
            index, "delete_points", AsyncMock(side_effect=VectorStoreError("down"))
        ):
            assert await pipeline.delete_chunk(chunk.id, SCOPE) is True

        assert await metadata_store.get_chunk(SCOPE, chunk.id) is None

    async def test_delete_document_leaves_no_orphans(self, pipeline, metadata_store, qdrant, index):
        doc_chunks = await pipeline.ingest_chunks(SCOPE, "Manual", "x" * 2000)
        [standalone] = await pipeline.ingest_text(SCOPE, "FAQ", "Returns within thirty days.")

        assert await pipeline.delete_document(doc_chunks[0].document_id, SCOPE) is True

        assert await metadata_store.list_chunks(SCOPE) == [standalone]
        assert _point_ids(qdrant, index, SCOPE) == {standalone.id}

    async def test_delete_unknown_document_is_false(self, pipeline):
        assert await pipeline.delete_document("no-such-document", SCOPE) is False


class TestListAndGet:
    async def test_list_and_get_are_scoped(self, pipeline):
        [a] = await pipeline.ingest_text(SCOPE, "A", "First entry text.")
        await pipeline.ingest_text(OTHER, "B", "Second entry text.")

        assert [c.id for c in await pipeline.list_chunks(SCOPE)] == [a.id]
        assert (await pipeline.get_chunk(a.id, SCOPE)).title == "A"
        assert await pipeline.get_chunk(a.id, OTHER) is None


# ── Search ──────────────────────────────────────────────────────────────────


class TestSearch:
    async def test_unindexed_scope_returns_empty(self, pipeline):
        assert await pipeline.search("empty-scope", "anything") == []

    async def test_results_scoped_and_ranked(self, pipeline):
        await pipeline.ingest_text(SCOPE, "Warranty", "Two year warranty on all stations.")
        await pipeline.ingest_text(SCOPE, "Shipping", "Free shipping over 500.")
        await pipeline.ingest_text(OTHER, "Secret", "Two year warranty on all stations.")

        results = await pipeline.search(SCOPE, "Two year warranty on all stations.")

        assert results[0].title == "Warranty"
        assert all(r.title != "Secret" for r in results)

    async def test_limit_clamped(self, pipeline, settings):
        for i in range(25):
            await pipeline.ingest_text(SCOPE, f"Entry {i}", f"Entry number {i} body text.")

        assert len(await pipeline.search(SCOPE, "entry body", limit=100)) == settings.max_search_limit
        assert len(await pipeline.search(SCOPE, "entry body")) == settings.default_search_limit

    async def test_blank_query_rejected(self, pipeline):
        with pytest.raises(InvalidContentError):
            await pipeline.search(SCOPE, "   ")

    async def test_expanded_query_embedded(self, pipeline, embedder):
        await pipeline.ingest_text(SCOPE, "Space", "Required space is 2.5 m.")

        await pipeline.search(SCOPE, "Qual o espaço?", expand=True)

        assert "space distance area required" in embedder.queries[-1]

    async def test_search_touches_last_access(self, pipeline, metadata_store):
        await pipeline.ingest_text(SCOPE, "Hours", "Open from nine to six.")

        await pipeline.search(SCOPE, "Open from nine to six.")
        await pipeline.tasks.drain()

        assert SCOPE in metadata_store.touched
