"""Metadata store abstract base class -- the relational record of truth.

Every relational backend implements this ABC. Chunk rows share their
primary key with the vector point written for them; the pipeline keeps
both stores in step, the store itself knows nothing about vectors.

All methods take scope_id so that no call can reach another scope's rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.agent_knowledge.models import CollectionRecord, KnowledgeChunk, KnowledgeDocument


class MetadataStore(ABC):
    """Abstract interface for knowledge chunk persistence.

    Methods:
        create_document: Persist a document row.
        create_chunks: Bulk-insert chunk rows in one transaction.
        get_chunk: Fetch a chunk by (scope_id, chunk_id).
        list_chunks: List a scope's chunks, optionally for one document.
        update_chunk: Overwrite a chunk row.
        delete_chunks: Delete chunk rows by id list.
        delete_document: Delete a document and all of its chunks.
        purge_scope: Delete every document and chunk of a scope.
        get_collection_record / save_collection_record / touch_collection:
            Scope-to-collection mapping with its schema version.
    """

    @abstractmethod
    async def create_document(self, document: KnowledgeDocument) -> KnowledgeDocument:
        """Persist a document row."""
        ...

    @abstractmethod
    async def create_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        """Bulk-insert chunk rows, all or nothing."""
        ...

    @abstractmethod
    async def get_chunk(self, scope_id: str, chunk_id: str) -> KnowledgeChunk | None:
        """Fetch a chunk, None if absent or owned by another scope."""
        ...

    @abstractmethod
    async def list_chunks(
        self, scope_id: str, document_id: str | None = None
    ) -> list[KnowledgeChunk]:
        """List chunks newest first."""
        ...

    @abstractmethod
    async def update_chunk(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        """Overwrite the stored row with chunk's fields."""
        ...

    @abstractmethod
    async def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> int:
        """Delete chunk rows, return the number deleted."""
        ...

    @abstractmethod
    async def delete_document(self, scope_id: str, document_id: str) -> list[str] | None:
        """Delete a document and its chunks.

        Returns:
            Ids of the deleted chunks, or None if the document was not found.
        """
        ...

    @abstractmethod
    async def purge_scope(self, scope_id: str) -> int:
        """Delete every document and chunk of a scope, return chunk count."""
        ...

    @abstractmethod
    async def get_collection_record(self, scope_id: str) -> CollectionRecord | None:
        """Fetch the scope's collection mapping."""
        ...

    @abstractmethod
    async def save_collection_record(self, record: CollectionRecord) -> CollectionRecord:
        """Insert or update the scope's collection mapping."""
        ...

    @abstractmethod
    async def touch_collection(self, scope_id: str, at: datetime) -> None:
        """Record the last time the scope's collection was searched."""
        ...
