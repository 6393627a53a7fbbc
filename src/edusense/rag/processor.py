"""Text indexer for RAG ingestion.

Chunks OCR text (or any reference text), embeds it and stores it in Qdrant.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import NAMESPACE_DNS, uuid5

from edusense.core.config import get_settings
from edusense.rag.chunking import ChunkingStrategy, get_chunker
from edusense.rag.embedder import Embedder, get_embedder
from edusense.rag.vector_store import VectorStore, get_vector_store

logger = logging.getLogger(__name__)


@dataclass
class IndexingResult:
    """Result of indexing one source text."""

    success: bool
    source_id: str
    chunk_ids: list[str] = field(default_factory=list)
    error: str | None = None
    processing_time_ms: int = 0

    @property
    def chunk_count(self) -> int:
        return len(self.chunk_ids)


class TextIndexer:
    """Indexes source text for retrieval.

    Pipeline:
    1. Split into chunks
    2. Generate embeddings
    3. Store in vector database
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        chunker: ChunkingStrategy,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.chunker = chunker

    async def index_text(
        self,
        text: str,
        source_id: str,
        metadata: dict | None = None,
    ) -> IndexingResult:
        """Index raw text for a source (usually a frame).

        Chunk IDs derive from ``source_id`` and chunk index, so re-indexing
        the same source overwrites its previous points.

        Args:
            text: Source text content
            source_id: Frame ID or other stable source identity
            metadata: subject, topic, source name...

        Returns:
            IndexingResult with the stored chunk IDs
        """
        start_time = datetime.now(UTC)
        logger.info(f"[Indexer] Indexing source {source_id}, text length: {len(text)}")

        try:
            chunks = self.chunker.chunk(text, metadata)

            if not chunks:
                return IndexingResult(
                    success=False,
                    source_id=source_id,
                    error="No chunks generated from text",
                )

            embeddings = await self.embedder.embed_texts([c.text for c in chunks])

            vector_chunks = []
            for chunk, embedding in zip(chunks, embeddings, strict=True):
                chunk_id = str(uuid5(NAMESPACE_DNS, f"{source_id}:{chunk.index}"))
                vector_chunks.append(
                    {
                        "id": chunk_id,
                        "vector": embedding,
                        "text": chunk.text,
                        "metadata": chunk.metadata,
                    }
                )

            await self.vector_store.upsert_chunks(vector_chunks)

            processing_time = int((datetime.now(UTC) - start_time).total_seconds() * 1000)
            logger.info(
                f"[Indexer] Indexed {len(vector_chunks)} chunks for {source_id} in {processing_time}ms"
            )
            return IndexingResult(
                success=True,
                source_id=source_id,
                chunk_ids=[c["id"] for c in vector_chunks],
                processing_time_ms=processing_time,
            )

        except Exception as e:
            processing_time = int((datetime.now(UTC) - start_time).total_seconds() * 1000)
            logger.error(f"[Indexer] Indexing failed for {source_id}: {e}", exc_info=True)
            return IndexingResult(
                success=False,
                source_id=source_id,
                error=str(e),
                processing_time_ms=processing_time,
            )

    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        """Delete previously indexed chunks."""
        return await self.vector_store.delete_chunks(chunk_ids)


# Singleton instance
_indexer: TextIndexer | None = None


async def get_indexer() -> TextIndexer:
    """Get or create the global TextIndexer instance."""
    global _indexer

    if _indexer is None:
        settings = get_settings()
        chunker = get_chunker(
            "fixed",
            chunk_size=settings.chunk_size_chars,
            overlap=settings.chunk_overlap_chars,
        )
        _indexer = TextIndexer(get_vector_store(), await get_embedder(), chunker)

    return _indexer
