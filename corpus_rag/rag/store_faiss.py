"""Vector store for corpus chunks.

Handles:
- Rate-limited batched inserts (shared by every backend)
- Cosine-similarity search with a threshold
- FAISS index over L2-normalized vectors, keyed by SQLite row id
- Rebuilding the index from stored embeddings
"""
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import numpy as np
import faiss
import structlog

from corpus_rag import config
from corpus_rag.db import ChunkDatabase
from corpus_rag.errors import StoreFailure
from corpus_rag.rag.models import DocumentChunk, SearchResult

logger = structlog.get_logger()


class VectorStore(ABC):
    """Storage of (content, vector, metadata) with similarity search."""

    def __init__(self, batch_size: int = None, batch_delay: float = None):
        self.batch_size = batch_size or config.INSERT_BATCH_SIZE
        self.batch_delay = config.INSERT_BATCH_DELAY if batch_delay is None else batch_delay

    async def insert_many(self, chunks: Sequence[DocumentChunk]) -> None:
        """Insert chunks in rate-limited batches.

        A failing batch aborts the remaining ones. Batches written before the
        failure stay stored.

        Raises:
            StoreFailure: If any batch fails
        """
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size

        for number, offset in enumerate(range(0, len(chunks), self.batch_size), 1):
            batch = list(chunks[offset : offset + self.batch_size])

            try:
                await self._write_batch(batch)
            except StoreFailure:
                logger.error("batch_insert_failed", batch=number, total_batches=total_batches)
                raise
            except Exception as e:
                logger.error(
                    "batch_insert_failed",
                    batch=number,
                    total_batches=total_batches,
                    error=str(e),
                )
                raise StoreFailure(f"Insert of batch {number}/{total_batches} failed: {e}") from e

            logger.info("batch_inserted", batch=number, total_batches=total_batches)

            if offset + self.batch_size < len(chunks):
                await self._pause()

    async def _pause(self) -> None:
        await asyncio.sleep(self.batch_delay)

    @abstractmethod
    async def _write_batch(self, batch: List[DocumentChunk]) -> None:
        """Atomically persist one batch."""

    @abstractmethod
    async def search(
        self,
        query_vector: Sequence[float],
        threshold: float = None,
        limit: int = None,
    ) -> List[SearchResult]:
        """Return chunks with similarity above threshold, best first."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored chunks."""

    @abstractmethod
    async def clear(self) -> None:
        """Delete every stored chunk."""


class FAISSVectorStore(VectorStore):
    """FAISS inner-product index plus SQLite rows.

    Vectors are L2-normalized before indexing so the inner product equals
    cosine similarity (1 - cosine distance).
    """

    def __init__(
        self,
        index_dir: Path = None,
        dimension: int = None,
        batch_size: int = None,
        batch_delay: float = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory for the index file and database (default: DATA_DIR)
            dimension: Embedding dimension (default from config)
            batch_size: Chunks per insert batch (default from config)
            batch_delay: Seconds to wait between insert batches (default from config)
        """
        super().__init__(batch_size=batch_size, batch_delay=batch_delay)
        self.index_dir = Path(index_dir or config.DATA_DIR)
        self.dimension = dimension or config.EMBEDDING_DIMENSION

        self.index_path = self.index_dir / "vectors.index"
        self.db = ChunkDatabase(self.index_dir / "corpus.sqlite")

        self.index: Optional[faiss.Index] = None
        self._lock = asyncio.Lock()

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def _new_index(self) -> faiss.Index:
        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        """Validate dimension and convert to a float32 matrix."""
        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise StoreFailure(f"Embeddings are not numeric vectors: {e}") from e

        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            got = matrix.shape[-1] if matrix.ndim else 0
            raise StoreFailure(
                f"Embedding dimension mismatch: expected {self.dimension}, got {got}"
            )
        return matrix

    @staticmethod
    def _normalized(matrix: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        if np.any(norms == 0):
            raise StoreFailure("Cannot index a zero vector")
        return np.ascontiguousarray(matrix / norms, dtype=np.float32)

    async def init_or_load(self) -> None:
        """Create the database and load the index, rebuilding it if stale.

        Raises:
            StoreFailure: If the database or index cannot be opened
        """
        try:
            self.db.init_database()
            row_count = self.db.get_chunk_count()
        except Exception as e:
            raise StoreFailure(f"Failed to open corpus database: {e}") from e

        if self.index_path.exists():
            try:
                index = faiss.read_index(str(self.index_path))
            except Exception as e:
                logger.warning("faiss_index_unreadable", error=str(e))
                index = None

            if index is not None and index.d == self.dimension and index.ntotal == row_count:
                self.index = index
                logger.info(
                    "faiss_index_loaded",
                    dimension=self.dimension,
                    vector_count=index.ntotal,
                )
                return

            logger.warning(
                "faiss_index_stale",
                index_vectors=getattr(index, "ntotal", None),
                stored_rows=row_count,
            )

        await self.rebuild_index()

    async def rebuild_index(self) -> None:
        """Rebuild the FAISS index from embeddings stored in SQLite."""
        index = self._new_index()

        try:
            for ids, vectors in self.db.iter_embeddings():
                matrix = self._as_matrix(vectors)
                index.add_with_ids(self._normalized(matrix), np.asarray(ids, dtype=np.int64))
        except StoreFailure:
            raise
        except Exception as e:
            raise StoreFailure(f"Failed to rebuild index: {e}") from e

        self.index = index
        self.save_index()
        logger.info("faiss_index_rebuilt", vector_count=index.ntotal)

    def save_index(self) -> None:
        """Write the FAISS index to disk.

        Raises:
            StoreFailure: If no index is loaded or the write fails
        """
        if self.index is None:
            raise StoreFailure("No index to save. Call init_or_load() first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)
        try:
            faiss.write_index(self.index, str(self.index_path))
        except Exception as e:
            raise StoreFailure(f"Failed to save FAISS index: {e}") from e

    def _require_index(self) -> faiss.Index:
        if self.index is None:
            raise StoreFailure("No index loaded. Call init_or_load() first.")
        return self.index

    async def _write_batch(self, batch: List[DocumentChunk]) -> None:
        if not batch:
            return

        matrix = self._as_matrix([chunk.embedding for chunk in batch])
        normalized = self._normalized(matrix)

        async with self._lock:
            # clear() swaps the index object
            index = self._require_index()
            conn = self.db.get_connection()
            ids: List[int] = []
            added = False
            try:
                ids = self.db.insert_chunks(
                    conn,
                    [
                        (chunk.content, vector, chunk.metadata)
                        for chunk, vector in zip(batch, matrix)
                    ],
                )
                index.add_with_ids(normalized, np.asarray(ids, dtype=np.int64))
                added = True
                conn.commit()
            except Exception as e:
                conn.rollback()
                if added:
                    index.remove_ids(np.asarray(ids, dtype=np.int64))
                raise StoreFailure(f"Failed to write batch: {e}") from e
            finally:
                conn.close()

            self.save_index()

        logger.debug("vectors_added", count=len(batch), total_vectors=index.ntotal)

    async def search(
        self,
        query_vector: Sequence[float],
        threshold: float = None,
        limit: int = None,
    ) -> List[SearchResult]:
        """Search for chunks similar to a query vector.

        Args:
            query_vector: Query embedding
            threshold: Results must have similarity strictly above this (default from config)
            limit: Maximum number of results (default from config)

        Returns:
            SearchResults ordered by descending similarity

        Raises:
            StoreFailure: On dimension mismatch or backend errors
        """
        threshold = config.MATCH_THRESHOLD if threshold is None else threshold
        limit = config.MATCH_COUNT if limit is None else limit

        index = self._require_index()
        query = self._normalized(self._as_matrix([query_vector]))

        top_k = min(limit, index.ntotal)
        if top_k <= 0:
            return []

        try:
            scores, ids = index.search(query, top_k)
        except Exception as e:
            raise StoreFailure(f"Vector search failed: {e}") from e

        hits = [
            (int(vector_id), min(float(score), 1.0))
            for vector_id, score in zip(ids[0].tolist(), scores[0].tolist())
            if vector_id != -1 and score > threshold
        ]

        try:
            rows = self.db.get_chunks_by_ids([vector_id for vector_id, _ in hits])
        except Exception as e:
            raise StoreFailure(f"Chunk lookup failed: {e}") from e

        results = []
        for vector_id, similarity in hits:
            row = rows.get(vector_id)
            if row is None:
                logger.warning("vector_id_without_row", vector_id=vector_id)
                continue
            results.append(
                SearchResult(
                    id=vector_id,
                    content=row["content"],
                    similarity=similarity,
                    metadata=row["metadata"],
                )
            )

        results.sort(key=lambda r: r.similarity, reverse=True)

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            threshold=threshold,
            results_found=len(results),
        )

        return results

    async def count(self) -> int:
        try:
            return self.db.get_chunk_count()
        except Exception as e:
            raise StoreFailure(f"Count failed: {e}") from e

    async def clear(self) -> None:
        """Remove every chunk and reset the index."""
        async with self._lock:
            try:
                deleted = self.db.clear_all_chunks()
            except Exception as e:
                raise StoreFailure(f"Clear failed: {e}") from e

            self.index = self._new_index()
            self.save_index()

        logger.warning("corpus_cleared", chunks_deleted=deleted)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": self.dimension,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "index_exists_on_disk": self.index_path.exists(),
        }


async def open_vector_store(index_dir: Path = None, **kwargs) -> FAISSVectorStore:
    """Create a FAISS vector store and load its index.

    Returns:
        Ready-to-use FAISSVectorStore
    """
    store = FAISSVectorStore(index_dir=index_dir, **kwargs)
    await store.init_or_load()
    return store
