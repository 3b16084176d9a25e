"""Tests for the retrieval state machine."""
import asyncio

import httpx
import pytest

from corpus_rag.errors import EmbeddingFailure, StoreFailure, ValidationFailure
from corpus_rag.llm_client import LLMClient
from corpus_rag.rag.fallback import FallbackResolver, LocalDirectorySource
from corpus_rag.rag.models import ContextSource, DegradeReason, SearchResult
from corpus_rag.rag.retriever import Retriever
from tests.conftest import FakeEmbedder, fake_vector, make_chunk


class StubStore:
    """Vector store double returning canned results."""

    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = []

    async def search(self, query_vector, threshold=None, limit=None):
        self.calls.append((threshold, limit))
        if self.error:
            raise self.error
        return self.results


class StubFallback:
    def __init__(self, excerpt=None, error=None):
        self.excerpt = excerpt
        self.error = error
        self.calls = 0

    async def resolve(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.excerpt


def hit(content, similarity):
    return SearchResult(id=1, content=content, similarity=similarity)


class TestResolveContext:
    async def test_joins_hits_with_blank_line(self):
        store = StubStore([hit("closest", 0.95), hit("next", 0.9)])
        retriever = Retriever(FakeEmbedder(), store)

        outcome = await retriever.resolve_context("what is zakat?")

        assert outcome.ok
        assert outcome.source is ContextSource.VECTOR
        assert outcome.context == "closest\n\nnext"
        assert store.calls == [(0.78, 5)]

    async def test_embedding_failure_degrades(self):
        fallback = StubFallback("never used")
        retriever = Retriever(FakeEmbedder(fail_on={"*"}), StubStore(), fallback=fallback)

        outcome = await retriever.resolve_context("q")

        assert not outcome.ok
        assert outcome.reason is DegradeReason.EMBEDDING_FAILED
        assert fallback.calls == 0
        assert await retriever.retrieve_context("q") == ""

    async def test_gateway_page_from_embedding_service_degrades(self):
        llm = LLMClient(
            base_url="https://llm.test/v1",
            api_key="sk-test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
        )
        retriever = Retriever(llm, StubStore(), fallback=StubFallback("never used"))

        outcome = await retriever.resolve_context("q")

        assert outcome.reason is DegradeReason.EMBEDDING_FAILED
        assert await retriever.retrieve_context("q") == ""

    async def test_quota_exceeded_is_reported(self):
        retriever = Retriever(FakeEmbedder(fail_on={"*"}, quota_exceeded=True), StubStore())

        outcome = await retriever.resolve_context("q")

        assert outcome.reason is DegradeReason.QUOTA_EXCEEDED

    async def test_store_failure_degrades_without_fallback(self):
        fallback = StubFallback("never used")
        retriever = Retriever(FakeEmbedder(), StubStore(error=StoreFailure("down")), fallback=fallback)

        outcome = await retriever.resolve_context("q")

        assert outcome.reason is DegradeReason.STORE_FAILED
        assert fallback.calls == 0

    async def test_no_hits_and_no_fallback_match(self):
        retriever = Retriever(FakeEmbedder(), StubStore(), fallback=StubFallback(None))

        assert await retriever.retrieve_context("q") == ""
        outcome = await retriever.resolve_context("q")
        assert outcome.reason is DegradeReason.NO_FALLBACK_MATCH

    async def test_no_hits_uses_fallback(self):
        retriever = Retriever(FakeEmbedder(), StubStore(), fallback=StubFallback("excerpt"))

        outcome = await retriever.resolve_context("q")

        assert outcome.ok
        assert outcome.source is ContextSource.FALLBACK
        assert outcome.context == "excerpt"

    async def test_unexpected_fallback_error_is_swallowed(self):
        retriever = Retriever(
            FakeEmbedder(), StubStore(), fallback=StubFallback(error=RuntimeError("boom"))
        )

        assert await retriever.retrieve_context("q") == ""

    async def test_empty_query(self):
        embedder = FakeEmbedder()
        retriever = Retriever(embedder, StubStore())

        outcome = await retriever.resolve_context("   ")

        assert outcome.reason is DegradeReason.EMPTY_QUERY
        assert embedder.calls == []

    async def test_slow_embedding_times_out(self):
        embedder = FakeEmbedder(delays={"slow": 1.0})
        retriever = Retriever(embedder, StubStore(), step_timeout=0.01)

        outcome = await retriever.resolve_context("slow")

        assert outcome.reason is DegradeReason.TIMEOUT

    async def test_cancellation_propagates(self):
        embedder = FakeEmbedder(delays={"slow": 1.0})
        retriever = Retriever(embedder, StubStore())

        task = asyncio.ensure_future(retriever.resolve_context("slow"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestWithRealStore:
    async def test_retrieves_ingested_chunk(self, store):
        content = "Zakat is an obligatory form of almsgiving in Islam, one of the five pillars."
        await store.insert_many([make_chunk(content, fake_vector(content))])

        retriever = Retriever(FakeEmbedder(), store)

        assert await retriever.retrieve_context(content) == content

    async def test_fallback_excerpt_is_truncated(self, store, tmp_path):
        raw = tmp_path / "raw"
        raw.mkdir()
        (raw / "waqfeya.txt").write_text("kitab " * 3000, encoding="utf-8")

        fallback = FallbackResolver(
            LocalDirectorySource(raw), candidates=["martabah samilah.txt", "waqfeya.txt"]
        )
        retriever = Retriever(FakeEmbedder(), store, fallback=fallback)

        context = await retriever.retrieve_context("anything")

        assert 0 < len(context) <= 6000
        assert context.startswith("kitab kitab")


class TestSearch:
    async def test_search_overrides(self):
        store = StubStore([hit("a", 0.6)])
        retriever = Retriever(FakeEmbedder(), store)

        results = await retriever.search("q", threshold=0.5, limit=1)

        assert [r.content for r in results] == ["a"]
        assert store.calls == [(0.5, 1)]

    async def test_search_propagates_embedding_failure(self):
        retriever = Retriever(FakeEmbedder(fail_on={"*"}), StubStore())

        with pytest.raises(EmbeddingFailure):
            await retriever.search("q")

    async def test_search_requires_query(self):
        retriever = Retriever(FakeEmbedder(), StubStore())

        with pytest.raises(ValidationFailure):
            await retriever.search("")
