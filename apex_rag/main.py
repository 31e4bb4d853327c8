"""Main Quart application for the Apex wiki RAG backend."""
import asyncio
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request
import structlog

from apex_rag import config
from apex_rag.errors import AnswerError
from apex_rag.logging_config import configure_logging
from apex_rag.rag.answer import AnswerEngine

configure_logging()

logger = structlog.get_logger()

app = Quart(__name__)


class MessagePart(BaseModel):
    """One text part of a chat turn."""

    text: str = ""


class ChatTurn(BaseModel):
    """A prior message in the conversation."""

    role: Literal["user", "model"]
    parts: List[MessagePart] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""

    message: Optional[str] = None
    history: List[ChatTurn] = Field(default_factory=list)


# Singleton engine, built on first use
_engine_instance: Optional[AnswerEngine] = None


def get_answer_engine() -> AnswerEngine:
    """Get or create the answer engine."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = AnswerEngine()
    return _engine_instance


@app.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a question grounded in the wiki index.

    Expects JSON body:
    {
        "message": "user message text",
        "history": [{"role": "user"|"model", "parts": [{"text": "..."}]}]  // optional
    }

    Returns JSON:
    {
        "answer": "assistant answer",
        "sources": ["Page Title", ...]
    }
    """
    data = await request.get_json(silent=True)

    if not isinstance(data, dict):
        logger.error("invalid_request_body")
        return jsonify({"error": "Message is required"}), 400

    try:
        chat_request = ChatRequest.model_validate(data)
    except ValidationError as e:
        logger.warning("invalid_chat_request", errors=e.error_count())
        return jsonify({"error": "Invalid request body"}), 400

    user_message = (chat_request.message or "").strip()
    if not user_message:
        return jsonify({"error": "Message is required"}), 400

    if len(user_message) > config.MAX_MESSAGE_LENGTH:
        return jsonify(
            {"error": f"Message too long (max {config.MAX_MESSAGE_LENGTH} characters)"}
        ), 400

    logger.info(
        "chat_request_received",
        message_length=len(user_message),
        history_turns=len(chat_request.history),
        user_message_preview=user_message[:100],
    )

    history = [turn.model_dump() for turn in chat_request.history]

    try:
        result = await asyncio.wait_for(
            get_answer_engine().answer(user_message, history),
            timeout=config.CHAT_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.error("chat_request_timed_out", timeout=config.CHAT_TIMEOUT)
        return jsonify({"error": "The request timed out. Please try again."}), 504
    except AnswerError as e:
        logger.error("chat_answer_failed", stage=e.stage, error=str(e))
        return jsonify({"error": e.public_message}), 500
    except Exception as e:
        logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "An internal error occurred"}), 500

    logger.info(
        "chat_response_sent",
        answer_length=len(result.get("answer", "")),
        sources=result.get("sources"),
    )
    return jsonify(result)


@app.route("/api/health")
async def health():
    """Simple health check."""
    return jsonify(
        {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check that the vector index is reachable."""
    checks = {"status": "healthy", "vector_index": False}

    try:
        stats = await get_answer_engine().retriever.vector_store.describe()
        checks["vector_index"] = True
        checks["vector_count"] = stats.get("vector_count", 0)
        return jsonify(checks), 200

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = "Vector index unavailable"
        return jsonify(checks), 503


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
