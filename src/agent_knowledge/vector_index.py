"""Qdrant collection lifecycle and point operations, one collection per scope.

Wraps the Qdrant Python client to provide:
- Lazy per-scope collection creation with named dense + sparse vectors and
  payload indexes on the filter fields
- Schema versioning: the schema version a collection was built with is
  recorded in the metadata store and compared by equality; collections
  without a record fall back to structural inspection of their vector config
- Destructive migration of mismatched collections (collection dropped, the
  scope's relational rows purged, collection recreated)
- Scope-guarded upsert, delete and query

Every point carries scope_id in its payload and every query and delete
filters on it, on top of the per-scope collection split.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field
from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    Fusion,
    FusionQuery,
    HasIdCondition,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Prefetch,
    ScoredPoint,
    SparseIndexParams,
    SparseVectorParams,
    VectorParams,
)
from qdrant_client.models import SparseVector as QdrantSparseVector

from src.agent_knowledge.config import KnowledgeSettings
from src.agent_knowledge.errors import SchemaMismatchError, VectorStoreError
from src.agent_knowledge.models import (
    CollectionRecord,
    CollectionSchema,
    EmbeddedChunk,
    SparseVector,
)
from src.agent_knowledge.store.base import MetadataStore

logger = structlog.get_logger(__name__)

# Local mode raises ValueError, remote mode raises the http exceptions.
_QDRANT_ERRORS: tuple[type[Exception], ...] = (
    UnexpectedResponse,
    ResponseHandlingException,
    ValueError,
    ConnectionError,
)


class EnsureOutcome(str, Enum):
    created = "created"
    ready = "ready"
    migrated = "migrated"


class CollectionShape(BaseModel):
    """Structural description of an existing collection's vector config."""

    named: bool
    dense_name: str | None = None
    dense_size: int | None = None
    distance: str | None = None
    sparse_names: list[str] = Field(default_factory=list)

    def describe(self) -> str:
        if not self.named:
            return f"unnamed-{self.dense_size}"
        sparse = ",".join(self.sparse_names) or "none"
        return f"named:{self.dense_name}-{self.dense_size}:{sparse}"


def schema_from_settings(settings: KnowledgeSettings) -> CollectionSchema:
    """Target collection schema for the configured embedding and hybrid mode."""
    return CollectionSchema(
        dense_size=settings.embedding_dimensions,
        sparse_name="sparse" if settings.hybrid_search else None,
    )


def _scope_filter(scope_id: str, *extra: Any) -> Filter:
    return Filter(
        must=[FieldCondition(key="scope_id", match=MatchValue(value=scope_id)), *extra]
    )


class VectorIndexManager:
    """Per-scope Qdrant collections with schema checks and migration.

    Args:
        client: Qdrant client (remote or local mode).
        metadata_store: Relational store holding collection records and the
            chunk rows purged during migration.
        schema: Target collection schema.
        collection_prefix: Prefix of every collection name.
        allow_destructive_migration: Rebuild mismatched collections inside
            ensure_collection(); when False, raise SchemaMismatchError.
    """

    def __init__(
        self,
        client: QdrantClient,
        metadata_store: MetadataStore,
        schema: CollectionSchema | None = None,
        collection_prefix: str = "knowledge_",
        allow_destructive_migration: bool = True,
    ) -> None:
        self._client = client
        self._metadata = metadata_store
        self._schema = schema or CollectionSchema()
        self._prefix = collection_prefix
        self._allow_migration = allow_destructive_migration

    @property
    def client(self) -> QdrantClient:
        """Expose the underlying Qdrant client for advanced operations."""
        return self._client

    @property
    def schema(self) -> CollectionSchema:
        return self._schema

    def collection_name(self, scope_id: str) -> str:
        return f"{self._prefix}{scope_id.replace('-', '_')}"

    @contextmanager
    def _errors(self, operation: str, collection: str) -> Iterator[None]:
        try:
            yield
        except _QDRANT_ERRORS as exc:
            logger.error(
                "vector_index.operation_failed",
                operation=operation,
                collection=collection,
                error=str(exc),
            )
            raise VectorStoreError(f"{operation} on {collection} failed: {exc}") from exc

    # ── Inspection ──────────────────────────────────────────────────────────

    async def list_collections(self) -> list[str]:
        with self._errors("list_collections", "*"):
            response = self._client.get_collections()
        return [c.name for c in response.collections]

    async def collection_exists(self, scope_id: str) -> bool:
        return self.collection_name(scope_id) in await self.list_collections()

    async def get_collection_schema(self, name: str) -> CollectionShape:
        """Describe the vector configuration of an existing collection."""
        with self._errors("get_collection", name):
            info = self._client.get_collection(name)

        params = info.config.params
        sparse_names = sorted((params.sparse_vectors or {}).keys())
        vectors = params.vectors
        if isinstance(vectors, dict):
            dense_name = self._schema.dense_name if self._schema.dense_name in vectors else None
            if dense_name is None and vectors:
                dense_name = next(iter(vectors))
            dense = vectors.get(dense_name) if dense_name else None
            return CollectionShape(
                named=True,
                dense_name=dense_name,
                dense_size=dense.size if dense else None,
                distance=dense.distance.value if dense else None,
                sparse_names=sparse_names,
            )
        return CollectionShape(
            named=False,
            dense_size=vectors.size if vectors else None,
            distance=vectors.distance.value if vectors else None,
            sparse_names=sparse_names,
        )

    async def describe_scope(self, scope_id: str) -> CollectionShape | None:
        """Shape of the scope's collection, None when it does not exist."""
        name = self.collection_name(scope_id)
        if name not in await self.list_collections():
            return None
        return await self.get_collection_schema(name)

    def matches_schema(self, shape: CollectionShape) -> bool:
        """Structural comparison against the target schema (legacy fallback)."""
        schema = self._schema
        if not shape.named or shape.dense_name != schema.dense_name:
            return False
        if shape.dense_size != schema.dense_size or shape.distance != schema.distance:
            return False
        if schema.has_sparse:
            return shape.sparse_names == [schema.sparse_name]
        return not shape.sparse_names

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def ensure_collection(self, scope_id: str) -> EnsureOutcome:
        """Make sure the scope's collection exists with the target schema.

        1. Missing -> create it and record its schema version.
        2. Present with the recorded version equal to the target (or, with
           no record, a structurally matching config) -> no-op; the record
           is refreshed.
        3. Mismatch -> destructive migration, or SchemaMismatchError when
           migration is disabled.

        Raises:
            VectorStoreError: If Qdrant cannot be reached.
            SchemaMismatchError: On mismatch with migration disabled.
        """
        name = self.collection_name(scope_id)
        target = self._schema.version

        if name not in await self.list_collections():
            await self._create(name)
            await self._record(scope_id, name)
            logger.info("vector_index.collection_created", scope_id=scope_id, collection=name)
            return EnsureOutcome.created

        record = await self._metadata.get_collection_record(scope_id)
        if record is not None:
            if record.schema_version == target:
                await self._record(scope_id, name)
                return EnsureOutcome.ready
            found = record.schema_version
        else:
            shape = await self.get_collection_schema(name)
            if self.matches_schema(shape):
                await self._record(scope_id, name)
                logger.info(
                    "vector_index.collection_adopted", scope_id=scope_id, collection=name
                )
                return EnsureOutcome.ready
            found = shape.describe()

        if not self._allow_migration:
            logger.warning(
                "vector_index.schema_mismatch",
                scope_id=scope_id,
                collection=name,
                found=found,
                expected=target,
            )
            raise SchemaMismatchError(scope_id, found, target)

        await self.migrate_collection(scope_id, found=found)
        return EnsureOutcome.migrated

    async def migrate_collection(self, scope_id: str, found: str | None = None) -> int:
        """Drop and rebuild the scope's collection, purging its relational rows.

        Existing vectors cannot be converted, so their chunks are deleted too
        and must be re-ingested.

        Returns:
            Number of chunk rows purged.
        """
        name = self.collection_name(scope_id)
        if name in await self.list_collections():
            with self._errors("delete_collection", name):
                self._client.delete_collection(name)

        purged = await self._metadata.purge_scope(scope_id)
        await self._create(name)
        await self._record(scope_id, name)

        logger.warning(
            "vector_index.collection_migrated",
            scope_id=scope_id,
            collection=name,
            found=found,
            expected=self._schema.version,
            chunks_purged=purged,
        )
        return purged

    async def drop_collection(self, scope_id: str) -> None:
        name = self.collection_name(scope_id)
        with self._errors("delete_collection", name):
            self._client.delete_collection(name)
        logger.info("vector_index.collection_dropped", scope_id=scope_id, collection=name)

    async def _create(self, name: str) -> bool:
        """Create the collection; a concurrent creation counts as success."""
        schema = self._schema
        sparse_config = (
            {schema.sparse_name: SparseVectorParams(index=SparseIndexParams())}
            if schema.sparse_name
            else None
        )
        try:
            self._client.create_collection(
                collection_name=name,
                vectors_config={
                    schema.dense_name: VectorParams(
                        size=schema.dense_size, distance=Distance.COSINE
                    ),
                },
                sparse_vectors_config=sparse_config,
            )
        except _QDRANT_ERRORS as exc:
            if name in await self.list_collections():
                logger.info("vector_index.collection_already_exists", collection=name)
                return False
            raise VectorStoreError(f"create_collection {name} failed: {exc}") from exc

        with self._errors("create_payload_index", name):
            for field in schema.keyword_fields:
                self._client.create_payload_index(
                    collection_name=name,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            for field in schema.integer_fields:
                self._client.create_payload_index(
                    collection_name=name,
                    field_name=field,
                    field_schema=PayloadSchemaType.INTEGER,
                )
        return True

    async def _record(self, scope_id: str, name: str) -> None:
        await self._metadata.save_collection_record(
            CollectionRecord(
                scope_id=scope_id,
                collection_name=name,
                schema_version=self._schema.version,
            )
        )

    # ── Points ──────────────────────────────────────────────────────────────

    def _point(self, item: EmbeddedChunk) -> PointStruct:
        vector: dict[str, Any] = {self._schema.dense_name: item.dense}
        if self._schema.sparse_name and item.sparse is not None and not item.sparse.is_empty():
            vector[self._schema.sparse_name] = QdrantSparseVector(
                indices=item.sparse.indices, values=item.sparse.values
            )
        return PointStruct(id=item.chunk.id, vector=vector, payload=item.chunk.to_payload())

    async def upsert_points(self, scope_id: str, items: list[EmbeddedChunk]) -> None:
        """Upsert all points in a single batched call.

        Raises:
            ValueError: If any chunk belongs to another scope.
            VectorStoreError: If the upsert fails.
        """
        for item in items:
            if item.chunk.scope_id != scope_id:
                raise ValueError(
                    f"Chunk {item.chunk.id} has scope_id={item.chunk.scope_id}, "
                    f"expected {scope_id}"
                )
        if not items:
            return

        name = self.collection_name(scope_id)
        with self._errors("upsert", name):
            self._client.upsert(
                collection_name=name,
                points=[self._point(item) for item in items],
                wait=True,
            )
        logger.debug("vector_index.points_upserted", collection=name, count=len(items))

    async def delete_points(self, scope_id: str, point_ids: list[str]) -> None:
        """Delete points by id, restricted to the scope."""
        if not point_ids:
            return
        name = self.collection_name(scope_id)
        with self._errors("delete", name):
            self._client.delete(
                collection_name=name,
                points_selector=FilterSelector(
                    filter=_scope_filter(scope_id, HasIdCondition(has_id=point_ids))
                ),
                wait=True,
            )

    async def delete_by_filter(self, scope_id: str, document_id: str) -> None:
        """Delete every point of a document within the scope."""
        name = self.collection_name(scope_id)
        with self._errors("delete", name):
            self._client.delete(
                collection_name=name,
                points_selector=FilterSelector(
                    filter=_scope_filter(
                        scope_id,
                        FieldCondition(key="document_id", match=MatchValue(value=document_id)),
                    )
                ),
                wait=True,
            )

    async def query(
        self,
        scope_id: str,
        dense: list[float],
        limit: int,
        sparse: SparseVector | None = None,
        shape: CollectionShape | None = None,
    ) -> list[ScoredPoint]:
        """Nearest points to the query, filtered to the scope.

        With a sparse slot and a non-empty sparse query, dense and sparse
        candidates are prefetched (each scope-filtered) and fused with RRF.
        A legacy unnamed collection is queried on its single dense vector.
        """
        name = self.collection_name(scope_id)
        query_filter = _scope_filter(scope_id)
        dense_name = self._schema.dense_name
        sparse_name = self._schema.sparse_name
        if shape is not None:
            dense_name = shape.dense_name if shape.named else None
            sparse_name = sparse_name if sparse_name in shape.sparse_names else None

        with self._errors("query_points", name):
            if sparse_name and sparse is not None and not sparse.is_empty():
                response = self._client.query_points(
                    collection_name=name,
                    prefetch=[
                        Prefetch(
                            query=dense,
                            using=dense_name,
                            limit=limit * 2,
                            filter=query_filter,
                        ),
                        Prefetch(
                            query=QdrantSparseVector(
                                indices=sparse.indices, values=sparse.values
                            ),
                            using=sparse_name,
                            limit=limit * 2,
                            filter=query_filter,
                        ),
                    ],
                    query=FusionQuery(fusion=Fusion.RRF),
                    query_filter=query_filter,
                    limit=limit,
                    with_payload=True,
                )
            else:
                response = self._client.query_points(
                    collection_name=name,
                    query=dense,
                    using=dense_name,
                    query_filter=query_filter,
                    limit=limit,
                    with_payload=True,
                )
        return list(response.points)

    def close(self) -> None:
        """Close the Qdrant client connection."""
        self._client.close()
