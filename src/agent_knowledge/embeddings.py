"""Dense embedding generation via the OpenAI embeddings API.

Two calling modes:
- embed_batch(): one request for a whole document's chunks. The provider
  tags every result with its input index and may return them out of order,
  so results are re-sorted before they are returned.
- embed_sequential(): one request per text with a fixed delay between calls
  to stay under the provider's requests-per-minute quota. Degraded path for
  when batching is disabled.

Inputs longer than embedding_max_chars are truncated, not rejected. The
client is built with max_retries=0: provider failures surface immediately
as EmbeddingProviderError and abort the calling operation.
"""

from __future__ import annotations

import asyncio

import structlog
from openai import AsyncOpenAI, OpenAIError

from src.agent_knowledge.config import KnowledgeSettings
from src.agent_knowledge.errors import EmbeddingProviderError

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """Generates dense embeddings for chunks and queries.

    Args:
        settings: Knowledge settings with API key, model and batching options.
        client: Optional pre-built AsyncOpenAI client (injected in tests).
    """

    def __init__(
        self, settings: KnowledgeSettings, client: AsyncOpenAI | None = None
    ) -> None:
        self._model = settings.embedding_model
        self._dimensions = settings.embedding_dimensions
        self._max_chars = settings.embedding_max_chars
        self._batch_size = settings.embedding_batch_size
        self._request_delay = settings.embedding_request_delay
        self._client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.embedding_timeout,
            max_retries=0,
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _truncate(self, text: str) -> str:
        return text if len(text) <= self._max_chars else text[: self._max_chars]

    async def _create(self, inputs: list[str]) -> list[list[float]]:
        """Single provider call, results ordered like inputs."""
        try:
            response = await self._client.embeddings.create(
                input=inputs,
                model=self._model,
                dimensions=self._dimensions,
            )
        except OpenAIError as exc:
            logger.error(
                "embeddings.provider_failed",
                model=self._model,
                input_count=len(inputs),
                error=str(exc),
            )
            raise EmbeddingProviderError(f"Embedding request failed: {exc}") from exc

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(inputs):
            raise EmbeddingProviderError(
                f"Provider returned {len(data)} embeddings for {len(inputs)} inputs"
            )
        return [item.embedding for item in data]

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self._create([self._truncate(text)])
        logger.debug("embeddings.generated", text_length=len(text))
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, one provider call per batch of up to batch_size.

        Returns:
            One vector per input text, in input order.
        """
        if not texts:
            return []

        truncated = [self._truncate(t) for t in texts]
        vectors: list[list[float]] = []
        for offset in range(0, len(truncated), self._batch_size):
            vectors.extend(await self._create(truncated[offset : offset + self._batch_size]))

        logger.debug("embeddings.batch_generated", count=len(vectors))
        return vectors

    async def embed_sequential(self, texts: list[str]) -> list[list[float]]:
        """Embed texts one call at a time with a fixed inter-call delay."""
        vectors: list[list[float]] = []
        for i, text in enumerate(texts):
            if i > 0:
                await asyncio.sleep(self._request_delay)
            vectors.append(await self.embed(text))
            if (i + 1) % 5 == 0 or i == len(texts) - 1:
                logger.debug("embeddings.sequential_progress", done=i + 1, total=len(texts))
        return vectors

    async def close(self) -> None:
        await self._client.close()
