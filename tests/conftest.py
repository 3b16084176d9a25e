"""Pytest configuration and shared fixtures."""
import asyncio
import math
import zlib
from typing import Dict, List, Optional, Set

import numpy as np
import pytest

from corpus_rag.errors import EmbeddingFailure
from corpus_rag.rag.models import DocumentChunk
from corpus_rag.rag.store_faiss import FAISSVectorStore


TEST_DIMENSION = 8


def fake_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Deterministic pseudo-embedding for a text."""
    rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
    return rng.normal(size=dimension).tolist()


def unit_vector(similarity: float) -> List[float]:
    """2-d unit vector whose cosine similarity to [1, 0] is `similarity`."""
    return [similarity, math.sqrt(1.0 - similarity ** 2)]


class FakeEmbedder:
    """Embedding port double with call tracking and scripted failures."""

    def __init__(
        self,
        dimension: int = TEST_DIMENSION,
        fail_on: Optional[Set[str]] = None,
        quota_exceeded: bool = False,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.dimension = dimension
        self.fail_on = fail_on or set()
        self.quota_exceeded = quota_exceeded
        self.delays = delays or {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(text, 0))
            if text in self.fail_on or "*" in self.fail_on:
                raise EmbeddingFailure("scripted failure", quota_exceeded=self.quota_exceeded)
            return fake_vector(text, self.dimension)
        finally:
            self.in_flight -= 1


class FakeLLM(FakeEmbedder):
    """Embedding + completion double for the HTTP layer."""

    def __init__(
        self,
        reply: str = "Bismillah. Answer.",
        stream_error: Optional[Exception] = None,
        stream_error_after: int = 0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.reply = reply
        self.stream_error = stream_error
        self.stream_error_after = stream_error_after
        self.chat_calls: List[List[Dict[str, str]]] = []

    async def chat(self, messages):
        self.chat_calls.append(messages)
        return self.reply

    async def stream_chat(self, messages):
        """Yield the reply word by word, optionally failing after N deltas."""
        self.chat_calls.append(messages)
        for i, word in enumerate(self.reply.split(" ")):
            if self.stream_error and i == self.stream_error_after:
                raise self.stream_error
            yield word if i == 0 else " " + word

    async def list_models(self):
        return ["test-model"]


def make_chunk(content: str, embedding: List[float], index: int = 0, total: int = 1) -> DocumentChunk:
    return DocumentChunk(
        content=content,
        embedding=embedding,
        metadata={"chunk_index": index, "total_chunks": total},
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
async def store(tmp_path):
    """FAISS store in a temp directory with no inter-batch delay."""
    vector_store = FAISSVectorStore(index_dir=tmp_path / "store", dimension=TEST_DIMENSION, batch_delay=0)
    await vector_store.init_or_load()
    return vector_store


@pytest.fixture
async def store_2d(tmp_path):
    """2-d store for exact similarity checks."""
    vector_store = FAISSVectorStore(index_dir=tmp_path / "store2d", dimension=2, batch_delay=0)
    await vector_store.init_or_load()
    return vector_store
