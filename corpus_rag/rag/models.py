"""Data model shared by the ingestion and retrieval pipelines."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from corpus_rag.errors import ValidationFailure

# JSON-compatible open map; values are checked at the ingestion boundary
JSONValue = Union[str, int, float, bool, None, List[Any], Dict[str, Any]]
Metadata = Dict[str, JSONValue]


def validate_metadata(metadata: Optional[Dict[str, Any]]) -> Metadata:
    """Check that metadata is a JSON-compatible map and return a copy.

    Raises:
        ValidationFailure: If a key is not a string or a value is not JSON
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationFailure("Metadata must be an object")

    def check(value: Any, path: str) -> None:
        if value is None or isinstance(value, (str, bool, int, float)):
            return
        if isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                check(item, f"{path}[{i}]")
            return
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise ValidationFailure(f"Metadata key at {path} must be a string")
                check(item, f"{path}.{key}")
            return
        raise ValidationFailure(
            f"Metadata value at {path} is not JSON-compatible ({type(value).__name__})"
        )

    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationFailure("Metadata keys must be strings")
        check(value, key)

    return dict(metadata)


@dataclass(frozen=True)
class DocumentChunk:
    """A normalized, embedded slice of a source document."""

    content: str
    embedding: List[float]
    metadata: Metadata = field(default_factory=dict)

    @property
    def chunk_index(self) -> int:
        return self.metadata["chunk_index"]

    @property
    def total_chunks(self) -> int:
        return self.metadata["total_chunks"]


@dataclass
class SearchResult:
    """A single corpus hit for a query vector."""

    id: int
    content: str
    similarity: float
    metadata: Optional[Metadata] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "similarity": self.similarity,
            "metadata": self.metadata,
        }


class ContextSource(str, Enum):
    VECTOR = "vector"
    FALLBACK = "fallback"


class DegradeReason(str, Enum):
    """Why a query ended up without grounding context."""

    DISABLED = "disabled"
    EMPTY_QUERY = "empty_query"
    EMBEDDING_FAILED = "embedding_failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    STORE_FAILED = "store_failed"
    NO_FALLBACK_MATCH = "no_fallback_match"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ContextFound:
    """Retrieval produced grounding context."""

    context: str
    source: ContextSource
    hits: int = 0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ContextDegraded:
    """Retrieval produced no context; the answer proceeds ungrounded."""

    reason: DegradeReason
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False

    @property
    def context(self) -> str:
        return ""


RetrievalOutcome = Union[ContextFound, ContextDegraded]


@dataclass
class IngestReport:
    """Result of ingesting one document."""

    document: str
    chunks: List[DocumentChunk]

    @property
    def chunks_processed(self) -> int:
        return len(self.chunks)
