"""Tests for retrieval, indexing and the Qdrant filter translation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from edusense.rag.chunking import FixedSizeChunker
from edusense.rag.processor import TextIndexer
from edusense.rag.retriever import RetrievedChunk, Retriever, format_chunks, get_stats
from edusense.rag.vector_store import VectorStore, build_filter


def _hit(text, score, **metadata):
    return {"id": f"id-{text}", "text": text, "score": score, "metadata": metadata}


@pytest.fixture
def embedder():
    mock = MagicMock()
    mock.embed_query = AsyncMock(return_value=[0.1, 0.2, 0.3])
    mock.embed_texts = AsyncMock(side_effect=lambda texts: [[0.1, 0.2, 0.3] for _ in texts])
    return mock


@pytest.fixture
def vector_store():
    mock = MagicMock()
    mock.search = AsyncMock(return_value=[])
    mock.upsert_chunks = AsyncMock(side_effect=lambda chunks: len(chunks))
    mock.delete_chunks = AsyncMock(side_effect=lambda ids: len(ids))
    return mock


class TestRetriever:
    @pytest.mark.asyncio
    async def test_results_sorted_and_above_floor(self, vector_store, embedder):
        vector_store.search.return_value = [
            _hit("weak", 0.49),
            _hit("good", 0.7),
            _hit("best", 0.93),
            _hit("edge", 0.5),
        ]
        retriever = Retriever(vector_store, embedder, min_score=0.5)

        chunks = await retriever.retrieve("What is force?", top_k=5)

        assert [c.text for c in chunks] == ["best", "good", "edge"]
        assert all(c.score >= 0.5 for c in chunks)

    @pytest.mark.asyncio
    async def test_top_k_is_respected(self, vector_store, embedder):
        vector_store.search.return_value = [_hit(str(i), 0.6 + i / 100) for i in range(6)]
        retriever = Retriever(vector_store, embedder)

        chunks = await retriever.retrieve("question", top_k=2)

        assert len(chunks) == 2
        assert vector_store.search.await_args.kwargs["limit"] == 2
        assert vector_store.search.await_args.kwargs["score_threshold"] == 0.5

    @pytest.mark.asyncio
    async def test_filters_are_passed_through(self, vector_store, embedder):
        retriever = Retriever(vector_store, embedder)

        await retriever.retrieve_by_subject("question", "physics")

        assert vector_store.search.await_args.kwargs["filters"] == {"subject": "physics"}

    @pytest.mark.asyncio
    async def test_zero_top_k_returns_nothing(self, vector_store, embedder):
        vector_store.search.return_value = [_hit(str(i), 0.9) for i in range(5)]
        retriever = Retriever(vector_store, embedder, default_top_k=5)

        assert await retriever.retrieve("what", top_k=0) == []
        vector_store.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_top_k_when_unset(self, vector_store, embedder):
        retriever = Retriever(vector_store, embedder, default_top_k=3)

        await retriever.retrieve("question")

        assert vector_store.search.await_args.kwargs["limit"] == 3

    @pytest.mark.asyncio
    async def test_difficulty_filter(self, vector_store, embedder):
        vector_store.search.return_value = [_hit("hard one", 0.8, difficulty="hard")]
        retriever = Retriever(vector_store, embedder)

        chunks = await retriever.retrieve_by_difficulty("question", "hard", top_k=2)

        assert [c.metadata["difficulty"] for c in chunks] == ["hard"]
        assert vector_store.search.await_args.kwargs["filters"] == {"difficulty": "hard"}
        assert vector_store.search.await_args.kwargs["limit"] == 2

    @pytest.mark.asyncio
    async def test_failure_returns_empty_list(self, vector_store, embedder):
        vector_store.search.side_effect = ConnectionError("qdrant unreachable")
        retriever = Retriever(vector_store, embedder)

        assert await retriever.retrieve("question") == []

    @pytest.mark.asyncio
    async def test_empty_question_skips_search(self, vector_store, embedder):
        retriever = Retriever(vector_store, embedder)

        assert await retriever.retrieve("  ") == []
        vector_store.search.assert_not_awaited()


def test_stats_and_formatting():
    chunks = [
        RetrievedChunk(id="1", text="a", score=0.9, metadata={"source": "Book"}),
        RetrievedChunk(id="2", text="b", score=0.6),
    ]

    stats = get_stats(chunks)
    assert stats["count"] == 2
    assert stats["avg_score"] == pytest.approx(0.75)
    assert stats["max_score"] == 0.9
    assert get_stats([])["count"] == 0

    formatted = format_chunks(chunks)
    assert formatted[0]["source"] == "Book"
    assert formatted[1] == {
        "index": 2,
        "text": "b",
        "score": 0.6,
        "source": "Unknown",
        "subject": "General",
        "topic": "N/A",
    }


def test_build_filter():
    assert build_filter(None) is None
    assert build_filter({"subject": None}) is None

    query_filter = build_filter({"subject": "physics", "metadata.frame_id": "f1"})
    keys = [condition.key for condition in query_filter.must]
    assert keys == ["metadata.subject", "metadata.frame_id"]


class TestTextIndexer:
    @pytest.mark.asyncio
    async def test_chunk_ids_are_stable_per_source(self, vector_store, embedder):
        indexer = TextIndexer(vector_store, embedder, FixedSizeChunker(chunk_size=30, overlap=10))

        first = await indexer.index_text("x" * 50, "frame-1", {"subject": "physics"})
        second = await indexer.index_text("x" * 50, "frame-1", {"subject": "physics"})

        assert first.success is True
        assert first.chunk_count == 2
        assert first.chunk_ids == second.chunk_ids

        stored = vector_store.upsert_chunks.await_args.args[0]
        assert stored[0]["metadata"]["subject"] == "physics"
        assert stored[0]["metadata"]["chunk_index"] == 0

    @pytest.mark.asyncio
    async def test_empty_text_is_not_indexed(self, vector_store, embedder):
        indexer = TextIndexer(vector_store, embedder, FixedSizeChunker(chunk_size=30, overlap=10))

        result = await indexer.index_text("   ", "frame-1")

        assert result.success is False
        vector_store.upsert_chunks.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_is_reported(self, vector_store, embedder):
        vector_store.upsert_chunks.side_effect = ConnectionError("down")
        indexer = TextIndexer(vector_store, embedder, FixedSizeChunker(chunk_size=30, overlap=10))

        result = await indexer.index_text("some text", "frame-1")

        assert result.success is False
        assert "down" in result.error


class TestVectorStoreStats:
    """Collection count and info over a mocked Qdrant client."""

    @pytest.mark.asyncio
    async def test_count(self):
        client = MagicMock()
        client.count = AsyncMock(return_value=MagicMock(count=42))

        assert await VectorStore(client).count() == 42
        client.count.assert_awaited_once_with(collection_name="academic_chunks")

    @pytest.mark.asyncio
    async def test_count_is_zero_on_error(self):
        client = MagicMock()
        client.count = AsyncMock(side_effect=ConnectionError("qdrant unreachable"))

        assert await VectorStore(client).count() == 0

    @pytest.mark.asyncio
    async def test_collection_info(self):
        client = MagicMock()
        client.get_collection = AsyncMock(
            return_value=MagicMock(points_count=7, status=MagicMock(value="green"))
        )

        info = await VectorStore(client, collection_name="notes").get_collection_info()

        assert info == {"name": "notes", "points_count": 7, "status": "green"}

    @pytest.mark.asyncio
    async def test_collection_info_is_none_on_error(self):
        client = MagicMock()
        client.get_collection = AsyncMock(side_effect=ConnectionError("down"))

        assert await VectorStore(client).get_collection_info() is None
