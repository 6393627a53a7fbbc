"""RAG (Retrieval-Augmented Generation) package.

Components:
- Chunker: fixed-size overlapping text chunks
- Embedder: OpenAI embeddings with pseudo-embedding fallback
- VectorStore: Qdrant client for the academic_chunks collection
- Retriever: best-effort semantic search with a similarity floor
- TextIndexer: chunk, embed and store source text
- Prompt builder: question, context and output-format rendering
"""

from edusense.rag.chunking import Chunk, FixedSizeChunker, get_chunker
from edusense.rag.embedder import Embedder, get_embedder, pseudo_embedding
from edusense.rag.processor import IndexingResult, TextIndexer, get_indexer
from edusense.rag.retriever import (
    RetrievedChunk,
    Retriever,
    format_chunks,
    get_retriever,
    get_stats,
)
from edusense.rag.vector_store import VectorStore, get_vector_store

__all__ = [
    "Chunk",
    "Embedder",
    "FixedSizeChunker",
    "IndexingResult",
    "RetrievedChunk",
    "Retriever",
    "TextIndexer",
    "VectorStore",
    "format_chunks",
    "get_chunker",
    "get_embedder",
    "get_indexer",
    "get_retriever",
    "get_stats",
    "get_vector_store",
    "pseudo_embedding",
]
