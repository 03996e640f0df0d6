"""Construction and lifecycle of the knowledge pipeline's clients.

KnowledgeRuntime builds every external client exactly once (Qdrant, OpenAI,
the SQLAlchemy engine) and wires them into the pipeline. Owners call
start() before use and close() at shutdown, or use it as an async context
manager:

    async with KnowledgeRuntime.from_settings(get_settings()) as runtime:
        await runtime.pipeline.search(scope_id, "installation space")
"""

from __future__ import annotations

import structlog
from qdrant_client import QdrantClient

from src.agent_knowledge.config import KnowledgeSettings
from src.agent_knowledge.embeddings import EmbeddingService
from src.agent_knowledge.ingestion.chunker import RecursiveChunker
from src.agent_knowledge.ingestion.pipeline import KnowledgePipeline
from src.agent_knowledge.ingestion.sparse import SparseVectorBuilder
from src.agent_knowledge.logging import configure_structlog
from src.agent_knowledge.retrieval import RetrievalEngine
from src.agent_knowledge.store.database import Database
from src.agent_knowledge.store.repository import SqlAlchemyMetadataStore
from src.agent_knowledge.tasks import BackgroundTasks
from src.agent_knowledge.vector_index import VectorIndexManager, schema_from_settings

logger = structlog.get_logger(__name__)


def build_qdrant_client(settings: KnowledgeSettings) -> QdrantClient:
    """Remote client when qdrant_url is set, local on-disk mode otherwise."""
    if settings.qdrant_url:
        return QdrantClient(url=settings.qdrant_url, api_key=settings.qdrant_api_key)
    return QdrantClient(path=settings.qdrant_path)


class KnowledgeRuntime:
    """Owns the clients behind a KnowledgePipeline and closes them in order."""

    def __init__(
        self,
        settings: KnowledgeSettings,
        database: Database,
        qdrant: QdrantClient,
        embedder: EmbeddingService,
    ) -> None:
        self.settings = settings
        self.database = database
        self.qdrant = qdrant
        self.embedder = embedder
        self.tasks = BackgroundTasks()
        self.store = SqlAlchemyMetadataStore(database.session)
        self.index = VectorIndexManager(
            qdrant,
            self.store,
            schema=schema_from_settings(settings),
            collection_prefix=settings.collection_prefix,
            allow_destructive_migration=settings.allow_destructive_migration,
        )
        self.retrieval = RetrievalEngine(self.index)
        self.pipeline = KnowledgePipeline(
            settings,
            store=self.store,
            index=self.index,
            embedder=embedder,
            retrieval=self.retrieval,
            sparse=SparseVectorBuilder(buckets=settings.sparse_buckets),
            chunker=RecursiveChunker(
                chunk_size=settings.chunk_size, overlap=settings.chunk_overlap
            ),
            tasks=self.tasks,
        )

    @classmethod
    def from_settings(cls, settings: KnowledgeSettings) -> KnowledgeRuntime:
        configure_structlog(settings)
        return cls(
            settings,
            database=Database(settings.database_url),
            qdrant=build_qdrant_client(settings),
            embedder=EmbeddingService(settings),
        )

    async def start(self) -> None:
        """Create the relational schema if needed."""
        await self.database.init_schema()
        logger.info(
            "knowledge_runtime.started",
            environment=self.settings.environment.value,
            schema_version=self.index.schema.version,
        )

    async def close(self) -> None:
        """Drain background work, then close Qdrant, OpenAI and the engine."""
        await self.tasks.drain()
        self.index.close()
        await self.embedder.close()
        await self.database.close()
        logger.info("knowledge_runtime.closed")

    async def __aenter__(self) -> KnowledgeRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
