"""Retriever for grounding context over the corpus.

Handles:
- Query embedding generation
- Thresholded vector search
- Raw-file fallback when search finds nothing
- Context assembly for the generation prompt

Every failure on this path degrades to "no context"; the outcome records why.
"""
import asyncio
from typing import Awaitable, List, Optional, TypeVar
import structlog

from corpus_rag import config
from corpus_rag.errors import EmbeddingFailure, StoreFailure, ValidationFailure
from corpus_rag.llm_client import Embedder
from corpus_rag.rag.fallback import FallbackResolver
from corpus_rag.rag.models import (
    ContextDegraded,
    ContextFound,
    ContextSource,
    DegradeReason,
    RetrievalOutcome,
    SearchResult,
)
from corpus_rag.rag.store_faiss import VectorStore

logger = structlog.get_logger()

T = TypeVar("T")

CONTEXT_SEPARATOR = "\n\n"


class Retriever:
    """Query-time retrieval pipeline."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        fallback: Optional[FallbackResolver] = None,
        threshold: float = None,
        limit: int = None,
        step_timeout: Optional[float] = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding port
            vector_store: Corpus store
            fallback: Raw-file resolver tried when search finds nothing
            threshold: Minimum similarity (exclusive, default from config)
            limit: Maximum number of hits (default from config)
            step_timeout: Seconds allowed per external step (default from config)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.fallback = fallback
        self.threshold = config.MATCH_THRESHOLD if threshold is None else threshold
        self.limit = limit or config.MATCH_COUNT
        self.step_timeout = config.RETRIEVAL_STEP_TIMEOUT if step_timeout is None else step_timeout

    async def _step(self, awaitable: Awaitable[T]) -> T:
        if not self.step_timeout:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.step_timeout)

    async def search(
        self,
        query: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Embed a query and search the corpus directly, without fallback.

        Raises:
            ValidationFailure: If the query is empty
            EmbeddingFailure: If the query cannot be embedded
            StoreFailure: If the search fails
        """
        if not query or not query.strip():
            raise ValidationFailure("Query is required")

        embedding = await self.embedder.embed(query)
        return await self.vector_store.search(
            embedding,
            threshold=self.threshold if threshold is None else threshold,
            limit=limit or self.limit,
        )

    async def resolve_context(self, query: str) -> RetrievalOutcome:
        """Run the retrieval state machine for a query.

        Returns:
            ContextFound with the assembled context, or ContextDegraded with
            the reason no context is available. Never raises except on
            cancellation.
        """
        if not query or not query.strip():
            return ContextDegraded(DegradeReason.EMPTY_QUERY)

        # Embed
        try:
            embedding = await self._step(self.embedder.embed(query))
        except asyncio.TimeoutError:
            logger.warning("query_embedding_timeout", timeout=self.step_timeout)
            return ContextDegraded(DegradeReason.TIMEOUT, "embedding")
        except EmbeddingFailure as e:
            if e.quota_exceeded:
                logger.info("rag_disabled_quota_exceeded")
                return ContextDegraded(DegradeReason.QUOTA_EXCEEDED, str(e))
            logger.info("query_embedding_failed", error=str(e))
            return ContextDegraded(DegradeReason.EMBEDDING_FAILED, str(e))

        # VectorSearch
        try:
            results = await self._step(
                self.vector_store.search(embedding, threshold=self.threshold, limit=self.limit)
            )
        except asyncio.TimeoutError:
            logger.warning("vector_search_timeout", timeout=self.step_timeout)
            return ContextDegraded(DegradeReason.TIMEOUT, "search")
        except StoreFailure as e:
            logger.warning("vector_search_failed", error=str(e))
            return ContextDegraded(DegradeReason.STORE_FAILED, str(e))

        if results:
            context = CONTEXT_SEPARATOR.join(result.content for result in results)
            logger.info(
                "context_assembled",
                hits=len(results),
                top_similarity=results[0].similarity,
                context_length=len(context),
            )
            return ContextFound(context=context, source=ContextSource.VECTOR, hits=len(results))

        # FallbackLookup
        if self.fallback is not None:
            try:
                excerpt = await self._step(self.fallback.resolve())
            except asyncio.TimeoutError:
                logger.warning("fallback_timeout", timeout=self.step_timeout)
                return ContextDegraded(DegradeReason.TIMEOUT, "fallback")
            except Exception as e:
                logger.warning("fallback_failed", error=str(e), error_type=type(e).__name__)
                excerpt = None

            if excerpt:
                return ContextFound(context=excerpt, source=ContextSource.FALLBACK)

        return ContextDegraded(DegradeReason.NO_FALLBACK_MATCH)

    async def retrieve_context(self, query: str) -> str:
        """Return grounding context for a query, or "" if none is available."""
        outcome = await self.resolve_context(query)
        if not outcome.ok:
            logger.info("no_context", reason=outcome.reason.value)
        return outcome.context
