"""Tests for the HTTP surface."""
import pytest

from corpus_rag.errors import CompletionFailure
from corpus_rag.main import Services, create_app
from corpus_rag.rag.fallback import FallbackResolver, LocalDirectorySource
from corpus_rag.rag.ingest import IngestPipeline
from corpus_rag.rag.retriever import Retriever
from tests.conftest import FakeLLM


DOCUMENT = (
    "Zakat is an obligatory form of almsgiving in Islam and one of the five pillars. "
    "It is paid on wealth that has been held for a lunar year."
)


def build_app(store, llm, fallback=None):
    services = Services(
        llm=llm,
        vector_store=store,
        retriever=Retriever(llm, store, fallback=fallback),
        ingest=IngestPipeline(llm, store),
    )
    return create_app(services)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(store, llm):
    return build_app(store, llm).test_client()


class TestCorpusEndpoints:
    async def test_upload_then_stats(self, client):
        response = await client.post(
            "/api/rag", json={"action": "upload", "content": DOCUMENT, "metadata": {"source": "zakat.txt"}}
        )
        assert response.status_code == 200
        assert (await response.get_json())["chunksProcessed"] == 1

        response = await client.get("/api/rag?action=stats")
        assert await response.get_json() == {"totalDocuments": 1, "totalChunks": 1}

    async def test_clear_then_stats(self, client):
        await client.post("/api/rag", json={"action": "upload", "content": DOCUMENT})

        response = await client.post("/api/rag", json={"action": "clear"})
        assert response.status_code == 200

        response = await client.get("/api/rag?action=stats")
        assert await response.get_json() == {"totalDocuments": 0, "totalChunks": 0}

    async def test_upload_requires_content(self, client):
        response = await client.post("/api/rag", json={"action": "upload", "content": ""})

        assert response.status_code == 400

    async def test_upload_rejects_non_text_content(self, client):
        response = await client.post("/api/rag", json={"action": "upload", "content": 123})

        assert response.status_code == 400

    async def test_upload_failure_names_document_and_stage(self, store):
        client = build_app(store, FakeLLM(fail_on={"*"})).test_client()

        response = await client.post(
            "/api/rag", json={"action": "upload", "content": DOCUMENT, "metadata": {"source": "zakat.txt"}}
        )

        assert response.status_code == 502
        body = await response.get_json()
        assert body["document"] == "zakat.txt"
        assert body["stage"] == "embed"

    async def test_search(self, client):
        await client.post("/api/rag", json={"action": "upload", "content": DOCUMENT})

        response = await client.get("/api/rag", query_string={"action": "search", "q": DOCUMENT})

        results = await response.get_json()
        assert response.status_code == 200
        assert results[0]["content"] == DOCUMENT
        assert results[0]["similarity"] > 0.78

    async def test_search_requires_query(self, client):
        response = await client.get("/api/rag?action=search")

        assert response.status_code == 400

    async def test_search_rejects_bad_threshold(self, client):
        response = await client.get("/api/rag", query_string={"action": "search", "q": "x", "threshold": "high"})

        assert response.status_code == 400

    @pytest.mark.parametrize("method", ["get", "post"])
    async def test_invalid_action(self, client, method):
        if method == "get":
            response = await client.get("/api/rag?action=drop")
        else:
            response = await client.post("/api/rag", json={"action": "drop"})

        assert response.status_code == 400


class TestChatEndpoint:
    async def test_grounded_answer(self, client, llm):
        await client.post("/api/rag", json={"action": "upload", "content": DOCUMENT})

        response = await client.post("/api/chat?nonstream=1", json={"messages": [{"role": "user", "content": DOCUMENT}]})

        body = await response.get_json()
        assert response.status_code == 200
        assert body["usedContext"] is True
        assert body["contextSource"] == "vector"
        system_prompt = llm.chat_calls[0][0]["content"]
        assert DOCUMENT in system_prompt

    async def test_answer_without_context_when_embedding_fails(self, store):
        llm = FakeLLM(fail_on={"*"})
        client = build_app(store, llm).test_client()

        response = await client.post("/api/chat?nonstream=1", json={"messages": [{"role": "user", "content": "What is zakat?"}]})

        body = await response.get_json()
        assert response.status_code == 200
        assert body["content"] == llm.reply
        assert body["usedContext"] is False
        assert "Relevant Islamic knowledge" not in llm.chat_calls[0][0]["content"]

    async def test_fallback_context(self, store, llm, tmp_path):
        raw = tmp_path / "raw"
        raw.mkdir()
        (raw / "waqfeya.txt").write_text("waqf text " * 50, encoding="utf-8")
        fallback = FallbackResolver(LocalDirectorySource(raw), candidates=["waqfeya.txt"])
        client = build_app(store, llm, fallback=fallback).test_client()

        response = await client.post("/api/chat?nonstream=1", json={"messages": [{"role": "user", "content": "waqf?"}]})

        body = await response.get_json()
        assert body["contextSource"] == "fallback"

    async def test_conversation_is_forwarded(self, client, llm):
        messages = [
            {"role": "user", "content": "Salam"},
            {"role": "assistant", "content": "Wa alaikum salam"},
            {"role": "user", "content": "What is zakat?"},
        ]

        await client.post("/api/chat?nonstream=1", json={"messages": messages})

        assert llm.chat_calls[0][1:] == messages

    async def test_requires_message(self, client):
        response = await client.post("/api/chat?nonstream=1", json={"messages": []})

        assert response.status_code == 400


class TestChatStreaming:
    async def test_streams_reply_text(self, client, llm):
        await client.post("/api/rag", json={"action": "upload", "content": DOCUMENT})

        response = await client.post("/api/chat", json={"messages": [{"role": "user", "content": DOCUMENT}]})

        assert response.status_code == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        assert response.headers["X-Used-Context"] == "true"
        assert response.headers["X-Context-Source"] == "vector"
        assert await response.get_data(as_text=True) == llm.reply
        assert DOCUMENT in llm.chat_calls[0][0]["content"]

    async def test_streams_without_context(self, client, llm):
        response = await client.post("/api/chat", json={"messages": [{"role": "user", "content": "What is zakat?"}]})

        assert response.headers["X-Used-Context"] == "false"
        assert response.headers["X-Context-Source"] == "none"
        assert await response.get_data(as_text=True) == llm.reply

    async def test_failure_before_first_delta_is_502(self, store):
        llm = FakeLLM(stream_error=CompletionFailure("upstream down"))
        client = build_app(store, llm).test_client()

        response = await client.post("/api/chat", json={"messages": [{"role": "user", "content": "Salam"}]})

        assert response.status_code == 502

    async def test_failure_mid_stream_truncates_body(self, store):
        llm = FakeLLM(reply="Bismillah. Zakat is due.", stream_error=CompletionFailure("reset"), stream_error_after=2)
        client = build_app(store, llm).test_client()

        response = await client.post("/api/chat", json={"messages": [{"role": "user", "content": "Salam"}]})

        assert response.status_code == 200
        assert await response.get_data(as_text=True) == "Bismillah. Zakat"


class TestHealth:
    async def test_live(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200

    async def test_ready(self, client):
        response = await client.get("/health/ready")

        body = await response.get_json()
        assert response.status_code == 200
        assert body["llm"] is True
        assert body["vector_store"] is True
