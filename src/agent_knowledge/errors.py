"""Error taxonomy for the knowledge pipeline.

- InvalidContentError: caller input rejected, nothing persisted.
- EmbeddingProviderError: the embedding API call failed.
- VectorStoreError: the vector index could not be reached or rejected a call.
- MetadataStoreError: the relational store failed.
- SchemaMismatchError: a scope's collection has an outdated schema and
  destructive migration is disabled.
"""

from __future__ import annotations


class KnowledgeError(Exception):
    """Base class for all knowledge pipeline errors."""


class InvalidContentError(KnowledgeError):
    """Raised when content, title or file metadata is not acceptable."""


class EmbeddingProviderError(KnowledgeError):
    """Raised when the embedding provider fails."""


class VectorStoreError(KnowledgeError):
    """Raised when a vector index operation fails."""


class MetadataStoreError(KnowledgeError):
    """Raised when a relational store operation fails."""


class SchemaMismatchError(KnowledgeError):
    """Raised when a collection's schema differs from the expected one.

    Attributes:
        scope_id: Scope whose collection is outdated.
        found: Schema version (or structural description) found in the index.
        expected: Schema version the pipeline writes.
    """

    def __init__(self, scope_id: str, found: str | None, expected: str) -> None:
        self.scope_id = scope_id
        self.found = found
        self.expected = expected
        super().__init__(
            f"Collection for scope {scope_id} has schema {found!r}, expected {expected!r}; "
            "run migrate_collection() to rebuild it"
        )
