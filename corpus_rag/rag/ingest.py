"""Ingest pipeline for adding documents to the corpus.

Orchestrates:
- Validation and normalization
- Text chunking
- Embedding generation (bounded concurrency, order preserved)
- Rate-limited storage
- Directory ingestion for batch loads
"""
import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import structlog

from corpus_rag import config
from corpus_rag.errors import (
    EmbeddingFailure,
    IngestionError,
    StoreFailure,
    ValidationFailure,
)
from corpus_rag.llm_client import Embedder
from corpus_rag.rag.chunker import TextChunker
from corpus_rag.rag.models import DocumentChunk, IngestReport, validate_metadata
from corpus_rag.rag.normalizer import normalize_text
from corpus_rag.rag.store_faiss import VectorStore

logger = structlog.get_logger()

CORPUS_FILE_PATTERNS = ("*.txt", "*.md")


class IngestPipeline:
    """Pipeline for ingesting documents into the corpus."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        chunker: Optional[TextChunker] = None,
        concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding port
            vector_store: Corpus store
            chunker: Text chunker (default: configured chunk size and overlap)
            concurrency: Maximum embedding calls in flight per document
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker()
        self.concurrency = concurrency or config.EMBED_CONCURRENCY

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed texts with bounded concurrency.

        Results are returned in input order regardless of completion order.

        Raises:
            EmbeddingFailure: If any embedding fails
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(text: str) -> List[float]:
            async with semaphore:
                return await self.embedder.embed(text)

        tasks = [asyncio.ensure_future(embed_one(text)) for text in texts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def prepare(
        self, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> List[DocumentChunk]:
        """Normalize, chunk and embed a document without storing it.

        Raises:
            ValidationFailure: If content is empty or not text, or metadata is not JSON
            EmbeddingFailure: If any chunk cannot be embedded
        """
        if not isinstance(content, str):
            raise ValidationFailure("Content must be a string")
        if not content.strip():
            raise ValidationFailure("Content is required")

        base_metadata = validate_metadata(metadata)

        chunks = self.chunker.chunk_text(normalize_text(content))
        if not chunks:
            return []

        # Metadata (and so chunk_index) is fixed before any embedding starts
        total = len(chunks)
        chunk_metadata = [
            {**base_metadata, "chunk_index": i, "total_chunks": total}
            for i in range(total)
        ]

        embeddings = await self.generate_embeddings(chunks)

        return [
            DocumentChunk(content=text, embedding=embedding, metadata=meta)
            for text, embedding, meta in zip(chunks, embeddings, chunk_metadata)
        ]

    async def ingest(
        self, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> IngestReport:
        """Ingest a single document.

        Args:
            content: Raw document text
            metadata: Caller metadata copied onto every chunk

        Returns:
            IngestReport with the stored chunks

        Raises:
            ValidationFailure: If content is empty or metadata is invalid
            IngestionError: If embedding or storage fails
        """
        source = metadata.get("source") if isinstance(metadata, dict) else None
        document = str(source or "<inline>")
        logger.info(
            "ingesting_document",
            document=document,
            content_length=len(content) if isinstance(content, str) else None,
        )

        try:
            chunks = await self.prepare(content, metadata)
        except EmbeddingFailure as e:
            logger.error("document_embedding_failed", document=document, error=str(e))
            raise IngestionError(document, "embed", str(e)) from e

        if not chunks:
            logger.warning("no_chunks_created", document=document)
            return IngestReport(document=document, chunks=[])

        try:
            await self.vector_store.insert_many(chunks)
        except StoreFailure as e:
            logger.error("document_store_failed", document=document, error=str(e))
            raise IngestionError(document, "store", str(e)) from e

        logger.info("document_ingested", document=document, chunks_created=len(chunks))

        return IngestReport(document=document, chunks=chunks)

    async def ingest_file(
        self, file_path: Path, metadata: Optional[Dict[str, Any]] = None
    ) -> IngestReport:
        """Ingest a UTF-8 text or markdown file.

        Raises:
            ValidationFailure: If the file cannot be read as UTF-8 text
            IngestionError: If embedding or storage fails
        """
        file_path = Path(file_path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationFailure(f"Cannot read {file_path}: {e}") from e

        return await self.ingest(content, {**(metadata or {}), "source": file_path.name})

    def discover_files(self, corpus_dir: Path) -> List[Path]:
        """Find corpus files recursively.

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        corpus_dir = Path(corpus_dir)
        if not corpus_dir.is_dir():
            raise FileNotFoundError(f"Corpus directory not found: {corpus_dir}")

        files = sorted(
            {path for pattern in CORPUS_FILE_PATTERNS for path in corpus_dir.rglob(pattern)}
        )

        logger.info("corpus_files_discovered", count=len(files), corpus_dir=str(corpus_dir))
        return files

    async def ingest_directory(
        self,
        corpus_dir: Path = None,
        rebuild: bool = False,
        progress_callback: Optional[Callable[[int, int, Path], None]] = None,
    ) -> Dict[str, int]:
        """Ingest every corpus file under a directory.

        Args:
            corpus_dir: Directory to scan (default from config)
            rebuild: If True, clear the corpus first
            progress_callback: Optional callback(current, total, file_path)

        Returns:
            Dictionary with ingestion statistics
        """
        corpus_dir = Path(corpus_dir or config.CORPUS_DIR)
        logger.info("starting_ingest_directory", corpus_dir=str(corpus_dir), rebuild=rebuild)

        files = self.discover_files(corpus_dir)

        if rebuild:
            await self.vector_store.clear()

        stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0}

        for idx, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(idx, len(files), file_path)

            try:
                report = await self.ingest_file(file_path)
            except (IngestionError, ValidationFailure) as e:
                logger.error("file_ingestion_failed", path=str(file_path), error=str(e))
                stats["files_failed"] += 1
                # Continue with next file instead of failing entirely
                continue

            stats["files_processed"] += 1
            stats["chunks_created"] += report.chunks_processed

        logger.info("ingest_directory_completed", **stats)
        return stats
