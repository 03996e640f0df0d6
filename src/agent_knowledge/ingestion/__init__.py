"""Document ingestion: chunking, sparse vectors and the pipeline API."""

from src.agent_knowledge.ingestion.chunker import RecursiveChunker
from src.agent_knowledge.ingestion.pipeline import KnowledgePipeline
from src.agent_knowledge.ingestion.sparse import SparseVectorBuilder

__all__ = [
    "KnowledgePipeline",
    "RecursiveChunker",
    "SparseVectorBuilder",
]
