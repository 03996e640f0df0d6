"""Relational metadata store: ABC, SQLAlchemy models and repository."""

from src.agent_knowledge.store.base import MetadataStore
from src.agent_knowledge.store.database import Database
from src.agent_knowledge.store.repository import SqlAlchemyMetadataStore

__all__ = [
    "Database",
    "MetadataStore",
    "SqlAlchemyMetadataStore",
]
