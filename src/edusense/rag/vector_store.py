"""Qdrant vector store client.

Holds the single ``academic_chunks`` collection used for retrieval.
"""

import logging
from uuid import uuid4

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models
from qdrant_client.http.models import Distance, PayloadSchemaType, VectorParams

from edusense.core.config import get_settings

logger = logging.getLogger(__name__)

# Payload fields that get keyword indexes for equality filters
INDEXED_METADATA_FIELDS = ("subject", "difficulty", "frame_id")


def build_filter(filters: dict | None) -> qdrant_models.Filter | None:
    """Translate ``{"subject": "physics"}`` into a payload equality filter.

    Keys are matched under ``metadata.`` unless already qualified.
    """
    if not filters:
        return None

    conditions = []
    for key, value in filters.items():
        if value is None:
            continue
        field_key = key if key.startswith("metadata.") else f"metadata.{key}"
        conditions.append(
            qdrant_models.FieldCondition(
                key=field_key,
                match=qdrant_models.MatchValue(value=value),
            )
        )

    if not conditions:
        return None
    return qdrant_models.Filter(must=conditions)


class VectorStore:
    """Qdrant vector store for RAG embeddings.

    Every point carries a payload of ``{text, metadata}``.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str = "academic_chunks",
        vector_size: int = 1536,
    ):
        self.client = client
        self.collection_name = collection_name
        self.vector_size = vector_size

    async def ensure_collection(self) -> bool:
        """Create the collection if it does not exist.

        Returns:
            True if created, False if already exists
        """
        collections = await self.client.get_collections()
        existing_names = [c.name for c in collections.collections]

        if self.collection_name in existing_names:
            return False

        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(
                size=self.vector_size,
                distance=Distance.COSINE,
            ),
            on_disk_payload=True,
        )

        for field_name in INDEXED_METADATA_FIELDS:
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=f"metadata.{field_name}",
                field_schema=PayloadSchemaType.KEYWORD,
            )

        logger.info(f"[VectorStore] Created collection '{self.collection_name}'")
        return True

    async def upsert_chunks(self, chunks: list[dict]) -> int:
        """Insert or update chunks.

        Args:
            chunks: List of chunk dicts with:
                - id: Unique chunk ID
                - vector: Embedding vector
                - text: Chunk text content
                - metadata: subject, topic, source, chunk_index, offsets...

        Returns:
            Number of chunks upserted
        """
        if not chunks:
            return 0

        points = [
            qdrant_models.PointStruct(
                id=chunk.get("id", str(uuid4())),
                vector=chunk["vector"],
                payload={
                    "text": chunk["text"],
                    "metadata": chunk.get("metadata", {}),
                },
            )
            for chunk in chunks
        ]

        batch_size = 100
        total_upserted = 0

        for i in range(0, len(points), batch_size):
            batch = points[i : i + batch_size]
            await self.client.upsert(
                collection_name=self.collection_name,
                points=batch,
            )
            total_upserted += len(batch)

        logger.info(
            f"[VectorStore] Upserted {total_upserted} points into '{self.collection_name}'"
        )
        return total_upserted

    async def search(
        self,
        query_vector: list[float],
        limit: int = 5,
        filters: dict | None = None,
        score_threshold: float | None = None,
    ) -> list[dict]:
        """Search for similar chunks.

        Args:
            query_vector: Query embedding
            limit: Maximum results
            filters: Metadata equality filter, e.g. {"subject": "physics"}
            score_threshold: Minimum similarity score

        Returns:
            List of matching chunks with scores, most similar first
        """
        results = await self.client.query_points(
            collection_name=self.collection_name,
            query=query_vector,
            limit=limit,
            query_filter=build_filter(filters),
            score_threshold=score_threshold,
            with_payload=True,
        )

        return [
            {
                "id": str(point.id),
                "score": point.score,
                "text": (point.payload or {}).get("text", ""),
                "metadata": (point.payload or {}).get("metadata", {}),
            }
            for point in results.points
        ]

    async def delete_chunks(self, ids: list[str]) -> int:
        """Delete chunks by ID.

        Returns:
            Number of IDs submitted for deletion
        """
        if not ids:
            return 0

        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=qdrant_models.PointIdsList(points=list(ids)),
        )
        return len(ids)

    async def count(self) -> int:
        """Count points in the collection, 0 if unavailable."""
        try:
            result = await self.client.count(collection_name=self.collection_name)
            return result.count
        except Exception as e:
            logger.warning(f"[VectorStore] Count failed: {e}")
            return 0

    async def get_collection_info(self) -> dict | None:
        """Get collection statistics."""
        try:
            info = await self.client.get_collection(self.collection_name)
            return {
                "name": self.collection_name,
                "points_count": info.points_count,
                "status": info.status.value,
            }
        except Exception as e:
            logger.warning(f"[VectorStore] Collection info unavailable: {e}")
            return None

    async def close(self) -> None:
        await self.client.close()


# Singleton instance
_vector_store: VectorStore | None = None


def get_vector_store() -> VectorStore:
    """Get or create the global VectorStore instance."""
    global _vector_store

    if _vector_store is None:
        settings = get_settings()
        client = AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            timeout=settings.qdrant_timeout,
        )
        _vector_store = VectorStore(
            client,
            collection_name=settings.qdrant_collection,
            vector_size=settings.embedding_dimensions,
        )

    return _vector_store
