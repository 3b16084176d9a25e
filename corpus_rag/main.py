"""Quart application exposing the corpus RAG core."""
from dataclasses import dataclass
from typing import Optional
import logging

from quart import Blueprint, Quart, current_app, jsonify, request
import structlog

from corpus_rag import config
from corpus_rag.errors import (
    CompletionFailure,
    EmbeddingFailure,
    IngestionError,
    StoreFailure,
    ValidationFailure,
)
from corpus_rag.llm_client import LLMClient
from corpus_rag.prompts import build_system_prompt
from corpus_rag.rag.fallback import FallbackResolver, build_file_source
from corpus_rag.rag.ingest import IngestPipeline
from corpus_rag.rag.models import ContextDegraded, ContextFound, DegradeReason
from corpus_rag.rag.retriever import Retriever
from corpus_rag.rag.store_faiss import VectorStore, open_vector_store

# Configure structured logging
logging.basicConfig(level=config.LOG_LEVEL, format="%(message)s")
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 4000


@dataclass
class Services:
    """Everything the HTTP layer needs, built once at startup."""

    llm: LLMClient
    vector_store: VectorStore
    retriever: Retriever
    ingest: IngestPipeline


async def build_services() -> Services:
    """Composition root: wire the LLM client, store and pipelines."""
    llm = LLMClient()
    vector_store = await open_vector_store()
    fallback = FallbackResolver(build_file_source())
    return Services(
        llm=llm,
        vector_store=vector_store,
        retriever=Retriever(llm, vector_store, fallback=fallback),
        ingest=IngestPipeline(llm, vector_store),
    )


def _services() -> Services:
    return current_app.config["SERVICES"]


bp = Blueprint("corpus_rag", __name__)


@bp.route("/api/rag", methods=["GET"])
async def rag_query():
    """Corpus statistics and direct search.

    Query parameters:
        action: "stats" or "search"
        q: search text (search only)
        threshold, limit: optional search overrides
    """
    services = _services()
    action = request.args.get("action")

    if action == "stats":
        total = await services.vector_store.count()
        # One row is one chunk
        return jsonify({"totalDocuments": total, "totalChunks": total})

    if action == "search":
        query = request.args.get("q", "").strip()
        if not query:
            return jsonify({"error": "Query parameter 'q' is required"}), 400

        try:
            threshold = float(request.args.get("threshold", config.MATCH_THRESHOLD))
            limit = int(request.args.get("limit", config.MATCH_COUNT))
        except ValueError:
            return jsonify({"error": "threshold and limit must be numbers"}), 400

        results = await services.retriever.search(query, threshold=threshold, limit=limit)
        return jsonify([result.to_dict() for result in results])

    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/rag", methods=["POST"])
async def rag_command():
    """Document upload and corpus clear.

    Expects JSON body:
    {
        "action": "upload" | "clear",
        "content": "document text",   // upload only
        "metadata": {...}              // optional
    }
    """
    services = _services()
    data = await request.get_json(silent=True) or {}
    action = data.get("action")

    if action == "upload":
        report = await services.ingest.ingest(data.get("content") or "", data.get("metadata"))
        return jsonify({
            "message": "Document uploaded successfully",
            "chunksProcessed": report.chunks_processed,
        })

    if action == "clear":
        await services.vector_store.clear()
        return jsonify({"message": "Corpus cleared successfully"})

    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/chat", methods=["POST"])
async def chat():
    """Answer the latest user message, grounded in corpus context when available.

    Expects JSON body:
    {
        "messages": [{"role": "user", "content": "..."}, ...]
    }

    Streams the reply as plain text by default; X-Used-Context and
    X-Context-Source headers describe the grounding. With `?nonstream=1`
    returns JSON instead:
    {
        "content": "assistant reply",
        "usedContext": true,
        "contextSource": "vector" | "fallback" | null
    }
    """
    services = _services()
    nonstream = request.args.get("nonstream") == "1"
    data = await request.get_json(silent=True) or {}
    messages = data.get("messages") or []

    if not isinstance(messages, list) or not messages:
        return jsonify({"error": "No message provided"}), 400

    last = messages[-1] if isinstance(messages[-1], dict) else {}
    user_message = str(last.get("content") or "").strip()
    if not user_message:
        return jsonify({"error": "No message provided"}), 400
    if len(user_message) > MAX_MESSAGE_LENGTH:
        return jsonify({"error": f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"}), 400

    outcome = ContextDegraded(DegradeReason.DISABLED)
    if config.ENABLE_RAG:
        try:
            outcome = await services.retriever.resolve_context(user_message)
        except Exception as e:
            # Retrieval never fails the request
            logger.error("rag_retrieval_failed", error=str(e), error_type=type(e).__name__)

    conversation = [
        {"role": m.get("role") or "user", "content": str(m.get("content") or "")}
        for m in messages
        if isinstance(m, dict)
    ]
    llm_messages = [{"role": "system", "content": build_system_prompt(outcome.context)}] + conversation
    context_source = outcome.source.value if isinstance(outcome, ContextFound) else None

    if nonstream:
        try:
            reply = await services.llm.chat(llm_messages)
        except CompletionFailure as e:
            logger.error("chat_completion_failed", error=str(e))
            return jsonify({"error": "LLM request failed"}), 502

        logger.info(
            "chat_response_sent",
            response_length=len(reply),
            used_context=outcome.ok,
            degrade_reason=None if outcome.ok else outcome.reason.value,
        )

        return jsonify({
            "content": reply,
            "usedContext": outcome.ok,
            "contextSource": context_source,
        })

    # Upstream errors before the first delta still map to 502
    stream = services.llm.stream_chat(llm_messages)
    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        first = ""
    except CompletionFailure as e:
        logger.error("chat_stream_failed", error=str(e))
        return jsonify({"error": "LLM streaming failed"}), 502

    async def relay():
        if first:
            yield first
        try:
            async for delta in stream:
                yield delta
        except CompletionFailure as e:
            # Headers already sent
            logger.error("chat_stream_interrupted", error=str(e))
            return
        logger.info(
            "chat_stream_sent",
            used_context=outcome.ok,
            degrade_reason=None if outcome.ok else outcome.reason.value,
        )

    headers = {
        "Content-Type": "text/plain; charset=utf-8",
        "X-Used-Context": "true" if outcome.ok else "false",
        "X-Context-Source": context_source or "none",
    }
    return relay(), 200, headers


@bp.route("/health/ready")
async def health_ready():
    """Readiness probe: LLM service reachable and vector store loaded."""
    services = _services()
    checks = {"status": "healthy", "llm": False, "vector_store": False}

    stats = services.vector_store.get_stats() if hasattr(services.vector_store, "get_stats") else {}
    checks["vector_store"] = bool(stats.get("initialized", True))

    try:
        await services.llm.list_models()
        checks["llm"] = True
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["error"] = str(e)

    if not (checks["llm"] and checks["vector_store"]):
        checks["status"] = "unhealthy"

    return jsonify(checks), 200 if checks["status"] == "healthy" else 503


@bp.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@bp.app_errorhandler(ValidationFailure)
async def validation_failed(error):
    return jsonify({"error": str(error)}), 400


@bp.app_errorhandler(IngestionError)
async def ingestion_failed(error):
    return jsonify({
        "error": str(error),
        "document": error.document,
        "stage": error.stage,
    }), 502


@bp.app_errorhandler(EmbeddingFailure)
async def embedding_failed(error):
    logger.error("embedding_failed", error=str(error))
    return jsonify({"error": "Embedding service unavailable"}), 502


@bp.app_errorhandler(StoreFailure)
async def store_failed(error):
    logger.error("store_failed", error=str(error))
    return jsonify({"error": "Vector store error"}), 500


@bp.app_errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@bp.app_errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


def create_app(services: Optional[Services] = None) -> Quart:
    """Create the Quart app.

    Args:
        services: Pre-built services (tests); built at startup when omitted
    """
    app = Quart(__name__)
    app.config["SERVICES"] = services
    app.register_blueprint(bp)

    @app.before_serving
    async def startup():
        if app.config["SERVICES"] is None:
            app.config["SERVICES"] = await build_services()
            logger.info("services_ready")

    return app


app = create_app()


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
