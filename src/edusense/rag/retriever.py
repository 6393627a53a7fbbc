"""RAG Retriever - semantic search over academic reference chunks.

Combines embedding and vector search. Retrieval is best-effort: callers
get an empty list, never an exception, when the embedder or the index is
unavailable.
"""

import logging
from dataclasses import dataclass, field

from edusense.core.config import get_settings
from edusense.rag.embedder import Embedder, get_embedder
from edusense.rag.vector_store import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

MIN_SCORE = 0.5
DEFAULT_TOP_K = 5


@dataclass
class RetrievedChunk:
    """A chunk retrieved from vector search."""

    id: str
    text: str
    score: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"text": self.text, "score": self.score, "metadata": self.metadata}


class Retriever:
    """Semantic retrieval with a fixed similarity floor.

    Results always satisfy ``score >= min_score``, are sorted by score
    (descending) and hold at most ``top_k`` entries.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        default_top_k: int = DEFAULT_TOP_K,
        min_score: float = MIN_SCORE,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.default_top_k = default_top_k
        self.min_score = min_score

    async def retrieve(
        self,
        question: str,
        top_k: int | None = None,
        filters: dict | None = None,
    ) -> list[RetrievedChunk]:
        """Retrieve relevant chunks for a question.

        Args:
            question: User's question
            top_k: Max chunks to return (defaults to configured top-k)
            filters: Metadata equality filter, e.g. {"subject": "physics"}

        Returns:
            List of relevant chunks, sorted by score
        """
        top_k = self.default_top_k if top_k is None else top_k
        if not question or not question.strip() or top_k <= 0:
            return []

        try:
            query_vector = await self.embedder.embed_query(question)
            results = await self.vector_store.search(
                query_vector=query_vector,
                limit=top_k,
                filters=filters,
                score_threshold=self.min_score,
            )
        except Exception as e:
            logger.warning(f"[Retriever] Retrieval failed, continuing without context: {e}")
            return []

        chunks = [
            RetrievedChunk(
                id=r.get("id", ""),
                text=r.get("text", ""),
                score=float(r.get("score", 0.0)),
                metadata=r.get("metadata") or {},
            )
            for r in results
            if float(r.get("score", 0.0)) >= self.min_score
        ]
        chunks.sort(key=lambda c: c.score, reverse=True)

        logger.debug(f"[Retriever] {len(chunks)} chunks above {self.min_score}")
        return chunks[:top_k]

    async def retrieve_by_subject(
        self, question: str, subject: str, top_k: int | None = None
    ) -> list[RetrievedChunk]:
        """Retrieve chunks tagged with one subject."""
        return await self.retrieve(question, top_k, filters={"subject": subject})

    async def retrieve_by_difficulty(
        self, question: str, difficulty: str, top_k: int | None = None
    ) -> list[RetrievedChunk]:
        """Retrieve chunks tagged with one difficulty level."""
        return await self.retrieve(question, top_k, filters={"difficulty": difficulty})


def format_chunks(chunks: list[RetrievedChunk]) -> list[dict]:
    """Flatten chunks for display and prompt rendering."""
    return [
        {
            "index": i,
            "text": chunk.text,
            "score": round(chunk.score, 3),
            "source": chunk.metadata.get("source") or "Unknown",
            "subject": chunk.metadata.get("subject") or "General",
            "topic": chunk.metadata.get("topic") or "N/A",
        }
        for i, chunk in enumerate(chunks, 1)
    ]


def get_stats(chunks: list[RetrievedChunk]) -> dict:
    """Aggregate score statistics over a result set."""
    if not chunks:
        return {"count": 0, "avg_score": 0.0, "max_score": 0.0, "min_score": 0.0}

    scores = [c.score for c in chunks]
    return {
        "count": len(scores),
        "avg_score": sum(scores) / len(scores),
        "max_score": max(scores),
        "min_score": min(scores),
    }


# Singleton instance
_retriever: Retriever | None = None


async def get_retriever() -> Retriever:
    """Get or create the global Retriever instance."""
    global _retriever

    if _retriever is None:
        settings = get_settings()
        _retriever = Retriever(
            get_vector_store(),
            await get_embedder(),
            default_top_k=settings.retrieval_top_k,
            min_score=settings.retrieval_min_score,
        )

    return _retriever
