"""Error taxonomy for the RAG core.

Retrieval recovers from every error here except ValidationFailure; ingestion
surfaces them to the caller wrapped in IngestionError.
"""
from typing import Optional


class CorpusRAGError(Exception):
    """Base class for all RAG core errors."""


class ValidationFailure(CorpusRAGError):
    """Caller supplied empty or malformed input."""


class EmbeddingFailure(CorpusRAGError):
    """The external embedding call failed."""

    def __init__(self, message: str, quota_exceeded: bool = False):
        super().__init__(message)
        self.quota_exceeded = quota_exceeded


class CompletionFailure(CorpusRAGError):
    """The external completion call failed."""


class StoreFailure(CorpusRAGError):
    """A read, write or delete against the vector store failed."""


class FallbackFailure(CorpusRAGError):
    """A raw-file fallback step (list, download, decode) failed."""


class IngestionError(CorpusRAGError):
    """Ingestion of a single document failed at a named stage."""

    def __init__(self, document: Optional[str], stage: str, message: str):
        self.document = document or "<inline>"
        self.stage = stage
        super().__init__(f"Ingestion of {self.document} failed at {stage}: {message}")
