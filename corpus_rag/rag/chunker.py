"""Text chunking with overlap for RAG pipeline.

Character-based windows, refined to end on a sentence or line boundary when one
lies close to the nominal window end.
"""
from typing import List, Optional
import structlog

from corpus_rag import config

logger = structlog.get_logger()

# How far either side of the nominal end a boundary may be found
BOUNDARY_WINDOW = 100


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_length: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            min_length: Chunks of this length or shorter are dropped (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.min_length = config.MIN_CHUNK_LENGTH if min_length is None else min_length

        # Validate parameters
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    def chunk_text(self, text: str) -> List[str]:
        """Split text into overlapping chunks.

        Args:
            text: Normalized text to chunk

        Returns:
            Trimmed chunk strings in document order. Windows whose trimmed
            length is not above min_length are skipped.
        """
        if not text:
            return []

        text_length = len(text)
        chunks: List[str] = []
        start = 0

        while start < text_length:
            end = start + self.chunk_size

            # Only refine when this is not the final window
            if end < text_length:
                end = self._refine_boundary(text, start, end)

            chunk = text[start:end].strip()
            if len(chunk) > self.min_length:
                chunks.append(chunk)

            next_start = end - self.chunk_overlap
            # Prevent the window from stalling or moving backwards
            if next_start <= start:
                next_start = end
            start = next_start

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks

    @staticmethod
    def _refine_boundary(text: str, start: int, end: int) -> int:
        """Move end to just after a nearby period, else a nearby newline.

        Only the first occurrence at or after end - BOUNDARY_WINDOW is
        considered, and it must lie strictly inside the window around end.
        The search never looks at or before start, so the window keeps
        at least one character.
        """
        low = end - BOUNDARY_WINDOW
        high = end + BOUNDARY_WINDOW

        for marker in (".", "\n"):
            position = text.find(marker, max(low, start + 1))
            if low < position < high:
                return position + 1

        return end

    def get_chunk_stats(self, chunks: List[str]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: Chunk strings

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def chunk_text(text: str, max_size: int = 1000, overlap: int = 200) -> List[str]:
    """Chunk text with an ad-hoc chunker (convenience function).

    Args:
        text: Normalized text to chunk
        max_size: Window size in characters
        overlap: Characters shared between consecutive windows

    Returns:
        List of chunk strings
    """
    return TextChunker(chunk_size=max_size, chunk_overlap=overlap).chunk_text(text)
