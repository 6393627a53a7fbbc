"""Text chunking strategies.

Splits OCR text and reference material into overlapping segments
suitable for embedding and retrieval.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from uuid import uuid4

# Token targets are converted to characters with a fixed average
CHARS_PER_TOKEN = 4
DEFAULT_CHUNK_TOKENS = 400
DEFAULT_OVERLAP_TOKENS = 50


@dataclass
class Chunk:
    """A text chunk ready for embedding."""

    id: str
    index: int
    text: str
    start_char: int
    end_char: int
    metadata: dict = field(default_factory=dict)


class ChunkingStrategy(ABC):
    """Base class for chunking strategies."""

    @abstractmethod
    def chunk(self, text: str, metadata: dict | None = None) -> list[Chunk]:
        """Split text into chunks."""


class FixedSizeChunker(ChunkingStrategy):
    """Fixed-size character chunking with overlap.

    Consecutive chunks share ``overlap`` characters. Once a window reaches
    the end of the text the loop stops: whatever would remain after stepping
    back by the overlap is already inside the last chunk. Each step advances
    by ``chunk_size - overlap`` so the loop always terminates.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_TOKENS * CHARS_PER_TOKEN,
        overlap: int = DEFAULT_OVERLAP_TOKENS * CHARS_PER_TOKEN,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str, metadata: dict | None = None) -> list[Chunk]:
        """Split text into fixed-size overlapping chunks."""
        if not text or not text.strip():
            return []

        chunks = []
        length = len(text)
        start = 0

        while start < length:
            end = min(start + self.chunk_size, length)
            chunk_text = text[start:end].strip()

            if chunk_text:
                index = len(chunks)
                chunks.append(
                    Chunk(
                        id=str(uuid4()),
                        index=index,
                        text=chunk_text,
                        start_char=start,
                        end_char=end,
                        metadata={
                            **(metadata or {}),
                            "chunk_index": index,
                            "start_char": start,
                            "end_char": end,
                        },
                    )
                )

            if end >= length:
                break
            start = end - self.overlap

        return chunks


def get_chunker(strategy: str = "fixed", **kwargs) -> ChunkingStrategy:
    """Get a chunking strategy by name.

    Args:
        strategy: "fixed"
        **kwargs: Strategy-specific parameters

    Returns:
        Configured chunking strategy
    """
    if strategy == "fixed":
        return FixedSizeChunker(**kwargs)
    raise ValueError(f"Unknown chunking strategy: {strategy}")


__all__ = [
    "Chunk",
    "ChunkingStrategy",
    "FixedSizeChunker",
    "get_chunker",
]
