"""OpenAI-compatible LLM client: the embedding and completion port."""
import json
import httpx
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
import structlog

from corpus_rag import config
from corpus_rag.errors import CompletionFailure, EmbeddingFailure

logger = structlog.get_logger()


class Embedder(Protocol):
    """Anything that turns text into a dense vector."""

    async def embed(self, text: str) -> List[float]:
        ...


class Completer(Protocol):
    """Anything that turns a conversation into a reply."""

    async def chat(self, messages: List[Dict[str, str]]) -> str:
        ...

    def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        ...


def _is_quota_error(response: Optional[httpx.Response]) -> bool:
    if response is None:
        return False
    if response.status_code == 429:
        return True
    try:
        body = response.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    return isinstance(error, dict) and error.get("type") == "insufficient_quota"


class LLMClient:
    """Async client for an OpenAI-compatible API (embeddings + chat)."""

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        embedding_model: str = None,
        chat_model: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL including version prefix (default from config)
            api_key: Bearer token (default from config)
            embedding_model: Embedding model name (default from config)
            chat_model: Chat model name (default from config)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.api_key = config.OPENAI_API_KEY if api_key is None else api_key
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.timeout = timeout or config.LLM_TIMEOUT
        self._transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def embeddings(self, text: str, model: str = None) -> Dict[str, Any]:
        """Request embeddings for a text.

        Returns:
            Raw response dict with 'data' list

        Raises:
            httpx.HTTPError: On API errors
            ValueError: If the response body is not JSON
        """
        model = model or self.embedding_model

        payload = {
            "model": model,
            "input": text,
            "encoding_format": "float",
        }

        try:
            async with self._client() as client:
                logger.debug("embedding_request", model=model, text_length=len(text))

                response = await client.post("/embeddings", json=payload)
                response.raise_for_status()
                return response.json()

        except httpx.HTTPError as e:
            logger.error(
                "embedding_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise
        except ValueError as e:
            logger.error("embedding_invalid_json", error=str(e))
            raise

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Raises:
            EmbeddingFailure: On any transport, API or payload error
        """
        try:
            data = await self.embeddings(text)
        except httpx.HTTPStatusError as e:
            raise EmbeddingFailure(
                f"Embedding request failed: {e}",
                quota_exceeded=_is_quota_error(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingFailure(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingFailure("Embedding response is not valid JSON") from e

        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingFailure("Malformed embedding response") from e

        if not embedding:
            raise EmbeddingFailure("Empty embedding returned")

        return embedding

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a chat completion request and return the reply text.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (default: client's chat model)
            temperature: Sampling temperature (default from config)

        Raises:
            CompletionFailure: On API errors or an empty reply
        """
        model = model or self.chat_model

        payload = {
            "model": model,
            "messages": messages,
            "temperature": config.CHAT_TEMPERATURE if temperature is None else temperature,
        }

        try:
            async with self._client() as client:
                logger.info("chat_request", model=model, message_count=len(messages))

                response = await client.post("/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("chat_http_error", error=str(e), model=model)
            raise CompletionFailure(f"Completion request failed: {e}") from e
        except ValueError as e:
            logger.error("chat_invalid_json", error=str(e), model=model)
            raise CompletionFailure("Completion response is not valid JSON") from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise CompletionFailure("Malformed completion response") from e

        logger.info("chat_response", model=model, response_length=len(content))
        return content

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion, yielding text deltas as they arrive.

        Reads the server-sent event stream of an OpenAI-compatible
        `/chat/completions` call with `stream: true`.

        Raises:
            CompletionFailure: On API errors or an unreadable event
        """
        model = model or self.chat_model

        payload = {
            "model": model,
            "messages": messages,
            "temperature": config.CHAT_TEMPERATURE if temperature is None else temperature,
            "stream": True,
        }

        total = 0
        try:
            async with self._client() as client:
                logger.info("chat_stream_request", model=model, message_count=len(messages))

                async with client.stream("POST", "/chat/completions", json=payload) as response:
                    response.raise_for_status()

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break

                        try:
                            choices = json.loads(data).get("choices") or []
                            delta = (choices[0].get("delta") or {}).get("content") if choices else None
                        except (ValueError, AttributeError) as e:
                            raise CompletionFailure("Malformed completion stream event") from e

                        if delta:
                            total += len(delta)
                            yield delta

        except httpx.HTTPError as e:
            logger.error("chat_stream_http_error", error=str(e), model=model)
            raise CompletionFailure(f"Completion stream failed: {e}") from e

        logger.info("chat_stream_finished", model=model, response_length=total)

    async def complete(self, prompt: str) -> str:
        """Single-prompt completion."""
        return await self.chat([{"role": "user", "content": prompt}])

    async def list_models(self) -> List[str]:
        """List model ids available to the API key.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/models")
                response.raise_for_status()
                data = response.json()
                return [m["id"] for m in data.get("data", [])]
        except httpx.HTTPError as e:
            logger.error("list_models_error", error=str(e))
            raise
