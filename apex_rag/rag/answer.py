"""Retrieval-augmented answering: prompt construction, generation and parsing.

A chat request moves through the stages of ``AnswerStage`` in order. Any
failure before PARSING aborts the request with an ``AnswerError`` naming
the stage; PARSING itself never fails and degrades to the raw model text.
"""
import json
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from apex_rag import config
from apex_rag.errors import AnswerError, EmptyResponseError
from apex_rag.llm_client import GeminiClient, gemini_client
from apex_rag.rag.retriever import RetrievalResult, Retriever

logger = structlog.get_logger()

CONTEXT_DELIMITER = "\n\n---\n\n"

FALLBACK_NOTE = (
    "Note: the AI response could not be parsed as structured data, "
    "so it is shown as returned.\n\n"
)

PROMPT_TEMPLATE = """You are an expert assistant for the game Apex Legends.
Answer the user's question using ONLY the information in the CONTEXT section.
If the context does not contain the answer, say that you don't know.

Respond with a single JSON object and nothing else, in this exact format:
{{"answer": "<your answer>", "sources": ["<page title>", ...]}}
"sources" must list the page titles from the context that you used.

=== CONTEXT ===
{context}
=== END CONTEXT ===

=== CONVERSATION HISTORY ===
{history}
=== END CONVERSATION HISTORY ===

=== QUESTION ===
{question}
=== END QUESTION ===
"""


class AnswerStage(str, Enum):
    """Stages of a chat request."""

    EMBEDDING_QUERY = "EMBEDDING_QUERY"
    RETRIEVING = "RETRIEVING"
    PROMPTING = "PROMPTING"
    GENERATING = "GENERATING"
    PARSING = "PARSING"
    DONE = "DONE"
    ERROR = "ERROR"


def unique_sources(results: Sequence[RetrievalResult]) -> List[str]:
    """Page titles of the retrieved chunks, deduplicated in rank order."""
    return list(dict.fromkeys(r.source for r in results if r.source))


def build_context(results: Sequence[RetrievalResult]) -> str:
    """Format retrieved chunks as delimited Source/Content blocks."""
    return CONTEXT_DELIMITER.join(
        f"Source: {r.source}\nContent: {r.content}" for r in results
    )


def format_history(history: Optional[Sequence[Dict[str, Any]]]) -> str:
    """Render chat turns as alternating ``User:`` / ``AI:`` lines.

    Args:
        history: Turns shaped ``{"role": "user"|"model", "parts": [{"text": ...}]}``

    Returns:
        One line per non-empty turn, or "(none)" for an empty history
    """
    lines = []
    for turn in history or []:
        text = " ".join(
            part.get("text", "") for part in turn.get("parts", []) if part.get("text")
        ).strip()
        if not text:
            continue
        speaker = "User" if turn.get("role") == "user" else "AI"
        lines.append(f"{speaker}: {text}")
    return "\n".join(lines) if lines else "(none)"


def build_prompt(
    question: str,
    results: Sequence[RetrievalResult],
    history: Optional[Sequence[Dict[str, Any]]] = None,
) -> str:
    """Build the single-input instruction prompt for the model."""
    context = build_context(results) or "(no relevant context found)"
    return PROMPT_TEMPLATE.format(
        context=context,
        history=format_history(history),
        question=question,
    )


def _is_answer_object(parsed: Any) -> bool:
    """A dict with a string ``answer`` and, if present, a list of string ``sources``."""
    if not isinstance(parsed, dict) or not isinstance(parsed.get("answer"), str):
        return False
    sources = parsed.get("sources", [])
    return isinstance(sources, list) and all(isinstance(s, str) for s in sources)


def parse_model_output(raw: str, results: Sequence[RetrievalResult]) -> Dict[str, Any]:
    """Extract the JSON answer object from raw model output.

    The substring between the first ``{`` and the last ``}`` is parsed. A
    dict with a string ``answer`` and a list of string ``sources`` (or no
    ``sources`` at all) is returned unchanged. Any other outcome falls back
    to the raw text with the retrieved page titles as sources. This
    function never raises.

    Args:
        raw: Raw model text
        results: Retrieved chunks used to build the prompt

    Returns:
        Dict with ``answer`` and ``sources``
    """
    start = raw.find("{")
    end = raw.rfind("}")

    if start != -1 and end > start:
        try:
            parsed = json.loads(raw[start : end + 1])
        except (ValueError, RecursionError) as e:
            logger.warning(
                "model_output_not_json",
                error=str(e),
                error_type=type(e).__name__,
                preview=raw[:100],
            )
        else:
            if _is_answer_object(parsed):
                parsed.setdefault("sources", [])
                return parsed
            logger.warning("model_output_wrong_shape", preview=raw[:100])
    else:
        logger.warning("model_output_without_json", preview=raw[:100])

    return {
        "answer": FALLBACK_NOTE + raw.strip(),
        "sources": unique_sources(results),
    }


def verify_sources(answer: Dict[str, Any], results: Sequence[RetrievalResult]) -> Dict[str, Any]:
    """Keep only claimed sources that were actually retrieved."""
    retrieved = set(unique_sources(results))
    claimed = answer.get("sources") or []
    if not isinstance(claimed, list):
        claimed = []
    claimed = list(dict.fromkeys(s for s in claimed if isinstance(s, str)))
    verified = [s for s in claimed if s in retrieved]
    dropped = [s for s in claimed if s not in retrieved]
    if dropped:
        logger.info("unverified_sources_dropped", dropped=dropped)
    return {**answer, "sources": verified}


class AnswerEngine:
    """Runs one chat request through embed, retrieve, prompt, generate, parse."""

    def __init__(
        self,
        retriever: Optional[Retriever] = None,
        llm_client: Optional[GeminiClient] = None,
        top_k: int = None,
        verify: Optional[bool] = None,
    ):
        """Initialize the engine.

        Args:
            retriever: Retriever for context lookup
            llm_client: Client for the generation call
            top_k: Number of chunks to retrieve (default from config)
            verify: Intersect model-claimed sources with retrieved titles
                (default from config.VERIFY_SOURCES)
        """
        self.llm_client = llm_client or gemini_client
        self.retriever = retriever or Retriever(llm_client=self.llm_client)
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.verify = config.VERIFY_SOURCES if verify is None else verify

    async def answer(
        self,
        message: str,
        history: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Answer a user message grounded in retrieved wiki context.

        Args:
            message: The user's question
            history: Prior chat turns, oldest first

        Returns:
            Dict with ``answer`` (str) and ``sources`` (list of str)

        Raises:
            AnswerError: If embedding, retrieval or generation fails
        """
        stage = AnswerStage.EMBEDDING_QUERY
        log = logger.bind(message_length=len(message), history_turns=len(history or []))

        try:
            query_embedding = await self.retriever.embed_query(message)

            stage = AnswerStage.RETRIEVING
            results = await self.retriever.search(query_embedding, top_k=self.top_k)

            stage = AnswerStage.PROMPTING
            prompt = build_prompt(message, results, history)
            log.info("prompt_built", sources=unique_sources(results), prompt_length=len(prompt))

            stage = AnswerStage.GENERATING
            raw = await self.llm_client.generate(prompt)
            if not raw or not raw.strip():
                raise EmptyResponseError("AI returned an empty response")

        except Exception as e:
            log.error(
                "answer_failed",
                stage=stage.value,
                next_stage=AnswerStage.ERROR.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AnswerError(stage.value, e) from e

        stage = AnswerStage.PARSING
        response = parse_model_output(raw, results)
        if self.verify:
            response = verify_sources(response, results)

        stage = AnswerStage.DONE
        log.info("answer_completed", stage=stage.value, sources=response.get("sources"))
        return response
