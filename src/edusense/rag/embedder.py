"""Embedding service using the OpenAI embeddings API.

Generates vector embeddings for text chunks and queries. When no provider
is configured, or a call fails, a deterministic pseudo-embedding is used
instead so the rest of the pipeline keeps working.
"""

import logging

import httpx
import numpy as np
from openai import AsyncOpenAI

from edusense.core.config import get_settings

logger = logging.getLogger(__name__)


def pseudo_embedding(text: str, dimensions: int = 1536) -> list[float]:
    """Character-code embedding used as a degraded placeholder.

    Each character adds ``ord(c) / 1000`` to slot ``i % dimensions`` and the
    result is L2-normalized. Identical input always yields the same vector.
    This carries no semantics beyond character statistics and is not a
    substitute for a real embedding model.
    """
    vector = np.zeros(dimensions, dtype=np.float64)
    for i, char in enumerate(text):
        vector[i % dimensions] += ord(char) / 1000

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector = vector / norm
    return vector.tolist()


class Embedder:
    """OpenAI embedding service with pseudo-embedding fallback.

    Uses text-embedding-3-small by default for cost-effective embeddings.
    """

    DEFAULT_MODEL = "text-embedding-3-small"
    BATCH_SIZE = 100  # Provider limit per request

    def __init__(
        self,
        client: AsyncOpenAI | None,
        model: str = DEFAULT_MODEL,
        dimensions: int = 1536,
    ):
        self.client = client
        self.model = model
        self.dimensions = dimensions

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector of ``self.dimensions`` floats
        """
        text = text.strip()
        if not text:
            raise ValueError("Cannot embed empty text")

        if self.client is None:
            return pseudo_embedding(text, self.dimensions)

        try:
            response = await self.client.embeddings.create(
                input=text,
                model=self.model,
                dimensions=self.dimensions,
            )
        except Exception as e:
            logger.warning(f"[Embedder] Provider embedding failed, using pseudo-embedding: {e}")
            return pseudo_embedding(text, self.dimensions)

        return response.data[0].embedding

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in batches.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, aligned with ``texts``
        """
        if not texts:
            return []

        cleaned = [(i, t.strip()) for i, t in enumerate(texts)]
        non_empty = [(i, t) for i, t in cleaned if t]

        if not non_empty:
            raise ValueError("All texts are empty")

        all_embeddings: list[list[float] | None] = [None] * len(texts)

        for batch_start in range(0, len(non_empty), self.BATCH_SIZE):
            batch = non_empty[batch_start : batch_start + self.BATCH_SIZE]
            batch_texts = [t for _, t in batch]

            vectors = await self._embed_batch(batch_texts)

            for (original_idx, _), vector in zip(batch, vectors, strict=True):
                all_embeddings[original_idx] = vector

        # Empty inputs keep their position with a zero vector
        zero_vector = [0.0] * self.dimensions
        return [vector if vector is not None else zero_vector for vector in all_embeddings]

    async def _embed_batch(self, batch_texts: list[str]) -> list[list[float]]:
        if self.client is None:
            return [pseudo_embedding(t, self.dimensions) for t in batch_texts]

        try:
            response = await self.client.embeddings.create(
                input=batch_texts,
                model=self.model,
                dimensions=self.dimensions,
            )
        except Exception as e:
            logger.warning(
                f"[Embedder] Batch of {len(batch_texts)} failed, using pseudo-embeddings: {e}"
            )
            return [pseudo_embedding(t, self.dimensions) for t in batch_texts]

        return [item.embedding for item in response.data]

    async def embed_query(self, query: str) -> list[float]:
        """Embed a search query.

        Alias for embed_text, but can be extended for query-specific processing.
        """
        return await self.embed_text(query)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


# Singleton instance
_embedder: Embedder | None = None


async def get_embedder() -> Embedder:
    """Get or create the global Embedder instance."""
    global _embedder

    if _embedder is None:
        settings = get_settings()
        api_key = settings.embedding_api_key or settings.openai_api_key

        client = None
        if api_key:
            logger.info(f"Initializing embedder with model '{settings.embedding_model}'")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=settings.embedding_base_url,
                timeout=httpx.Timeout(120.0, connect=30.0),
            )
        else:
            logger.warning("No embedding API key configured; using pseudo-embeddings")

        _embedder = Embedder(
            client=client,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )

    return _embedder
