"""Multi-tenant knowledge ingestion and retrieval.

Turns extracted document text into enriched, overlapping chunks, embeds them
(dense + hashed sparse vectors), stores each chunk as a relational row and a
Qdrant point sharing one id, and serves similarity search confined to the
owning scope.
"""

from src.agent_knowledge.config import KnowledgeSettings, get_settings
from src.agent_knowledge.errors import (
    EmbeddingProviderError,
    InvalidContentError,
    KnowledgeError,
    MetadataStoreError,
    SchemaMismatchError,
    VectorStoreError,
)
from src.agent_knowledge.models import ChunkView, FileMeta, KnowledgeChunk, KnowledgeDocument
from src.agent_knowledge.runtime import KnowledgeRuntime

__all__ = [
    "ChunkView",
    "EmbeddingProviderError",
    "FileMeta",
    "InvalidContentError",
    "KnowledgeChunk",
    "KnowledgeDocument",
    "KnowledgeError",
    "KnowledgeRuntime",
    "KnowledgeSettings",
    "MetadataStoreError",
    "SchemaMismatchError",
    "VectorStoreError",
    "get_settings",
]
