"""SQLite persistence for corpus chunks.

Each row holds the chunk text, its embedding (float32 blob) and JSON metadata.
Row ids double as FAISS vector ids.
"""
import sqlite3
import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence, Tuple
from datetime import datetime, timezone
import numpy as np
import structlog

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChunkDatabase:
    """Row store for the corpus table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database.

        Returns:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Create the corpus table if it doesn't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS corpus_chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    dimension INTEGER NOT NULL,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))

        except Exception as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise
        finally:
            conn.close()

    def insert_chunks(
        self,
        conn: sqlite3.Connection,
        rows: Sequence[Tuple[str, np.ndarray, Dict[str, Any]]],
    ) -> List[int]:
        """Insert chunk rows on an open connection without committing.

        The caller owns the transaction so a batch can be rolled back if the
        vector index rejects it.

        Args:
            conn: Open connection
            rows: (content, float32 vector, metadata) tuples

        Returns:
            Row ids in insertion order
        """
        cursor = conn.cursor()
        timestamp = _now()
        ids = []

        for content, vector, metadata in rows:
            cursor.execute("""
                INSERT INTO corpus_chunks (
                    content, embedding, dimension, metadata_json,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                content,
                vector.astype(np.float32).tobytes(),
                int(vector.shape[0]),
                json.dumps(metadata, ensure_ascii=False),
                timestamp,
                timestamp,
            ))
            ids.append(cursor.lastrowid)

        return ids

    def get_chunks_by_ids(self, ids: List[int]) -> Dict[int, Dict[str, Any]]:
        """Retrieve chunk content and metadata by row id.

        Returns:
            Mapping of id to {"id", "content", "metadata"}
        """
        if not ids:
            return {}

        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            placeholders = ",".join("?" * len(ids))
            cursor.execute(f"""
                SELECT id, content, metadata_json
                FROM corpus_chunks
                WHERE id IN ({placeholders})
            """, ids)

            chunks = {}
            for row in cursor.fetchall():
                chunks[row["id"]] = {
                    "id": row["id"],
                    "content": row["content"],
                    "metadata": json.loads(row["metadata_json"]) if row["metadata_json"] else {},
                }
            return chunks

        except Exception as e:
            logger.error("chunks_retrieval_failed", error=str(e))
            raise
        finally:
            conn.close()

    def iter_embeddings(self, batch_size: int = 1000) -> Iterator[Tuple[List[int], np.ndarray]]:
        """Yield (ids, vectors) batches for rebuilding the vector index."""
        conn = self.get_connection()
        try:
            cursor = conn.execute("SELECT id, embedding FROM corpus_chunks ORDER BY id")
            while True:
                rows = cursor.fetchmany(batch_size)
                if not rows:
                    break
                ids = [row["id"] for row in rows]
                vectors = np.stack(
                    [np.frombuffer(row["embedding"], dtype=np.float32) for row in rows]
                )
                yield ids, vectors
        finally:
            conn.close()

    def clear_all_chunks(self) -> int:
        """Delete all chunks.

        Returns:
            Number of chunks deleted
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) FROM corpus_chunks")
            count = cursor.fetchone()[0]

            cursor.execute("DELETE FROM corpus_chunks")
            conn.commit()

            logger.info("chunks_cleared", count=count)
            return count

        except Exception as e:
            conn.rollback()
            logger.error("chunks_clear_failed", error=str(e))
            raise
        finally:
            conn.close()

    def get_chunk_count(self) -> int:
        """Get the total number of stored chunks."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) FROM corpus_chunks")
            return cursor.fetchone()[0]

        except Exception as e:
            logger.error("chunk_count_failed", error=str(e))
            raise
        finally:
            conn.close()
