"""Pydantic models for the knowledge pipeline domain.

Defines the types shared by ingestion, storage and retrieval: documents,
chunks, request payloads, search results, sparse vectors and the vector
collection schema. These models are the contract between the relational
store, the vector index and callers of the pipeline.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

ContentType = Literal["text", "faq", "document"]
Language = Literal["pt", "en", "de", "es", "unknown"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Documents and Chunks ────────────────────────────────────────────────────


class FileMeta(BaseModel):
    """Metadata of an uploaded source file whose text was already extracted.

    Attributes:
        filename: Original filename.
        mime_type: MIME type reported by the uploader.
        size: Size of the original file in bytes.
        extra: Additional upload metadata copied onto every chunk.
    """

    filename: str
    mime_type: str = "application/octet-stream"
    size: int = Field(default=0, ge=0)
    extra: dict[str, Any] = Field(default_factory=dict)


class KnowledgeDocument(BaseModel):
    """Logical grouping of the chunks produced from one upload."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    scope_id: str
    title: str
    source_filename: str | None = None
    mime_type: str | None = None
    byte_size: int | None = None
    chunk_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class KnowledgeChunk(BaseModel):
    """A single unit of knowledge, stored as a row and as a vector point.

    The id is the primary key in the relational store and the point id in
    the vector index.

    Attributes:
        id: Unique identifier (UUID4), shared by both stores.
        scope_id: Owning scope (agent configuration) for tenant isolation.
        document_id: Parent document, None for standalone text/FAQ entries.
        title: Display title.
        content: Plain text content.
        content_type: Kind of entry this chunk came from.
        chunk_index: 0-based position within the document.
        total_chunks: Number of chunks the document was split into.
        language: Detected language of the source content.
        keywords: Ordered, de-duplicated keywords.
        has_numbers: Source content carries numerical data.
        has_table: Source content carries table-like structure.
        file_type: MIME type of the source file, if any.
        file_size: Size of the source file in bytes, if any.
        metadata: Additional upload/processing metadata.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    scope_id: str
    document_id: str | None = None
    title: str
    content: str
    content_type: ContentType = "text"
    chunk_index: int = 0
    total_chunks: int = 1
    language: Language = "unknown"
    keywords: list[str] = Field(default_factory=list)
    has_numbers: bool = False
    has_table: bool = False
    file_type: str | None = None
    file_size: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_payload(self) -> dict[str, Any]:
        """Denormalised vector point payload used for filtering and display."""
        return {
            "scope_id": self.scope_id,
            "document_id": self.document_id,
            "title": self.title,
            "content": self.content,
            "content_type": self.content_type,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "language": self.language,
            "keywords": self.keywords,
            "has_numbers": self.has_numbers,
            "has_table": self.has_table,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "created_at": self.created_at.isoformat(),
        }


# ── Requests ────────────────────────────────────────────────────────────────


class KnowledgeEntryCreate(BaseModel):
    """Validated input for creating knowledge from text."""

    title: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    content_type: ContentType = "text"

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class ChunkPatch(BaseModel):
    """Partial update of a chunk. Unset fields are left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    content: str | None = Field(default=None, min_length=1)
    content_type: ContentType | None = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("content must not be blank")
        return value


# ── Search Results ──────────────────────────────────────────────────────────


class ChunkView(BaseModel):
    """A ranked search hit rebuilt from a vector point payload."""

    id: str
    title: str
    content: str
    content_type: str
    chunk_index: int
    similarity: float
    document_id: str | None = None
    language: str = "unknown"
    keywords: list[str] = Field(default_factory=list)


# ── Vectors and Schema ──────────────────────────────────────────────────────


class SparseVector(BaseModel):
    """Sparse lexical vector as parallel index/value lists."""

    indices: list[int] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.indices


class EmbeddedChunk(BaseModel):
    """A chunk together with the vectors that will be written for it."""

    chunk: KnowledgeChunk
    dense: list[float]
    sparse: SparseVector | None = None


class CollectionSchema(BaseModel):
    """Target shape of every scope collection.

    The version tag is derived from the vector config and from the set of
    indexed payload fields. Any change to either yields a different tag and
    triggers a rebuild of existing collections. Index field order is ignored.
    """

    generation: int = 2
    dense_size: int = 1536
    distance: Literal["Cosine"] = "Cosine"
    dense_name: str = "dense"
    sparse_name: str | None = "sparse"
    keyword_fields: tuple[str, ...] = (
        "scope_id",
        "document_id",
        "content_type",
        "language",
        "keywords",
    )
    integer_fields: tuple[str, ...] = ("chunk_index",)

    @property
    def version(self) -> str:
        sparse = self.sparse_name or "none"
        return (
            f"v{self.generation}:{self.dense_name}-{self.dense_size}-"
            f"{self.distance.lower()}:{sparse}:idx-{self.index_digest}"
        )

    @property
    def index_digest(self) -> str:
        fields = "|".join(
            ",".join(sorted(group)) for group in (self.keyword_fields, self.integer_fields)
        )
        return hashlib.sha256(fields.encode("utf-8")).hexdigest()[:8]

    @property
    def has_sparse(self) -> bool:
        return self.sparse_name is not None


class CollectionRecord(BaseModel):
    """Relational record mapping a scope to its collection and schema version."""

    scope_id: str
    collection_name: str
    schema_version: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime | None = None
