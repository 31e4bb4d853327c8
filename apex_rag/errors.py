"""Exception hierarchy for the wiki RAG backend.

Every error carries a human-readable message plus optional details for
logging. ``public_message`` is the text that may be shown to API callers;
it never contains upstream payloads or tracebacks.
"""
from typing import Any, Dict, Optional


class ApexRagError(Exception):
    """Base exception for all application errors."""

    public_message = "An internal error occurred"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class EmbeddingError(ApexRagError):
    """Raised when an embedding could not be produced within the retry budget."""


class VectorStoreError(ApexRagError):
    """Raised when the vector index rejects a request or is unreachable."""

    public_message = "Failed to query knowledge base."


class GenerationError(ApexRagError):
    """Raised when the generative model call fails."""

    public_message = "Failed to get response from AI"


class EmptyResponseError(GenerationError):
    """Raised when the generative model returns no text."""

    public_message = "AI returned an empty response"


class AnswerError(ApexRagError):
    """A chat request that failed at a given pipeline stage.

    Args:
        stage: Name of the stage that failed
        cause: The underlying error
    """

    def __init__(self, stage: str, cause: Exception):
        self.stage = stage
        self.cause = cause
        self.public_message = getattr(cause, "public_message", ApexRagError.public_message)
        super().__init__(
            f"Answer failed during {stage}: {cause}",
            {"stage": stage, "error_type": type(cause).__name__},
        )
