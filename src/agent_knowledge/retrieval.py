"""Scoped similarity search over a scope's vector collection.

RetrievalEngine turns a query vector into ranked ChunkView results. Every
query is confined to one scope twice over: the scope's own collection and a
payload filter on scope_id. Hits whose payload names another scope are
dropped and logged.

Also provides cosine_similarity() / rank_by_similarity() for ranking
candidates without the index, and expand_query() for the Portuguese to
English synonym expansion applied to queries against mixed-language
catalogues.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

import structlog
from qdrant_client.models import ScoredPoint

from src.agent_knowledge.models import ChunkView, KnowledgeChunk, SparseVector
from src.agent_knowledge.vector_index import VectorIndexManager

logger = structlog.get_logger(__name__)

SCORE_DECIMALS = 3

# Matched on the lowercased query; every matching key appends its terms.
QUERY_EXPANSIONS: dict[str, str] = {
    "espaço": "space distance area required",
    "dimensão": "dimension size measurement",
    "dimensões": "dimensions size measurements",
    "tamanho": "size dimension",
    "distância": "distance spacing required",
    "instalação": "installation setup required space",
    "espaço necessário": "required space distance needed",
    "medidas": "measurements dimensions size",
    "treinar": "training workout exercise",
    "equipamento": "equipment device station",
    "aparelho": "device equipment station",
    "funciona": "works functions operates",
    "como usar": "how to use operation",
    "preço": "price cost pricing",
    "características": "features characteristics specifications",
}

_DECIMAL_RE = re.compile(r"\d+[.,]\d+")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between a and b.

    Returns 0.0 when the lengths differ or either vector has zero norm.
    """
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_by_similarity(
    query_vector: Sequence[float],
    candidates: Sequence[tuple[KnowledgeChunk, Sequence[float]]],
    limit: int,
) -> list[ChunkView]:
    """Rank (chunk, vector) pairs against query_vector without the index."""
    scored = [
        (cosine_similarity(query_vector, vector), chunk) for chunk, vector in candidates
    ]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [
        ChunkView(
            id=chunk.id,
            title=chunk.title,
            content=chunk.content,
            content_type=chunk.content_type,
            chunk_index=chunk.chunk_index,
            similarity=round(score, SCORE_DECIMALS),
            document_id=chunk.document_id,
            language=chunk.language,
            keywords=list(chunk.keywords),
        )
        for score, chunk in scored[:limit]
    ]


def expand_query(text: str) -> str:
    """Append English synonyms and repeat decimal numbers found in text."""
    query = text.strip()
    lowered = query.lower()
    expanded = query
    for term, synonyms in QUERY_EXPANSIONS.items():
        if term in lowered:
            expanded += " " + synonyms
    numbers = _DECIMAL_RE.findall(query)
    if numbers:
        expanded += " " + " ".join(numbers)
    return expanded


def _point_to_view(point: ScoredPoint) -> ChunkView:
    payload = point.payload or {}
    return ChunkView(
        id=str(point.id),
        title=payload.get("title", ""),
        content=payload.get("content", ""),
        content_type=payload.get("content_type", "text"),
        chunk_index=payload.get("chunk_index", 0),
        similarity=round(point.score, SCORE_DECIMALS),
        document_id=payload.get("document_id"),
        language=payload.get("language", "unknown"),
        keywords=list(payload.get("keywords") or []),
    )


class RetrievalEngine:
    """Runs scoped nearest-neighbour queries and maps hits to ChunkViews.

    Args:
        index: Vector index manager owning the scope collections.
    """

    def __init__(self, index: VectorIndexManager) -> None:
        self._index = index

    async def search(
        self,
        scope_id: str,
        query_vector: list[float],
        limit: int,
        query_sparse: SparseVector | None = None,
    ) -> list[ChunkView]:
        """Top-limit chunks of the scope nearest to the query.

        Returns an empty list when the scope has no collection yet. With a
        sparse slot on the collection and a sparse query, results are the
        RRF fusion of dense and sparse candidates.
        """
        shape = await self._index.describe_scope(scope_id)
        if shape is None:
            logger.debug("retrieval.no_collection", scope_id=scope_id)
            return []

        points = await self._index.query(
            scope_id, query_vector, limit, sparse=query_sparse, shape=shape
        )

        results: list[ChunkView] = []
        for point in points:
            owner = (point.payload or {}).get("scope_id")
            if owner != scope_id:
                logger.warning(
                    "retrieval.foreign_point_dropped",
                    scope_id=scope_id,
                    point_scope_id=owner,
                    point_id=str(point.id),
                )
                continue
            results.append(_point_to_view(point))

        logger.info(
            "retrieval.search_completed",
            scope_id=scope_id,
            limit=limit,
            hybrid=query_sparse is not None and not query_sparse.is_empty(),
            results=len(results),
        )
        return results
