"""Gemini API client wrapper with error handling and embedding retries."""
import asyncio
import httpx
from typing import Awaitable, Callable, List, Optional
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from apex_rag import config
from apex_rag.errors import EmbeddingError, GenerationError

logger = structlog.get_logger()


class RetryableEmbeddingError(Exception):
    """Rate-limit or transient failure that is worth another attempt."""


class GeminiClient:
    """Async client for the Gemini embedding and generation endpoints.

    One instance serves both ingestion and the chat path so both sides
    embed with the same model and dimensionality.
    """

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        embedding_dimension: Optional[int] = None,
        max_attempts: int = None,
        retry_base_delay: float = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the Gemini client.

        Args:
            api_key: Gemini API key (defaults to config.GEMINI_API_KEY)
            base_url: API base URL (defaults to config.GEMINI_BASE_URL)
            chat_model: Generation model name
            embedding_model: Embedding model name
            embedding_dimension: Expected vector length, 0 disables the check
            max_attempts: Total embedding attempts before giving up
            retry_base_delay: First backoff delay in seconds, doubled per attempt
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            sleep: Coroutine used to wait between embedding attempts
        """
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.embedding_dimension = (
            config.EMBEDDING_DIMENSION if embedding_dimension is None else embedding_dimension
        )
        self.max_attempts = max_attempts or config.EMBED_MAX_ATTEMPTS
        self.retry_base_delay = (
            config.EMBED_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )
        self.timeout = timeout or config.LLM_TIMEOUT
        self.transport = transport
        self.sleep = sleep or asyncio.sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a text.

        Rate-limit responses (429), server errors and transport failures are
        retried with exponential backoff up to ``max_attempts`` total calls.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the retry budget is exhausted or the response
                is unusable
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RetryableEmbeddingError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, exp_base=2),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                "embedding_retry_scheduled",
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                error=str(state.outcome.exception()),
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._embed_once(text)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                "embedding_retries_exhausted",
                attempts=self.max_attempts,
                error=str(last_error),
                text_preview=text[:100],
            )
            raise EmbeddingError(
                f"Embedding failed after {self.max_attempts} attempts: {last_error}",
                {"model": self.embedding_model},
            ) from last_error

    async def _embed_once(self, text: str) -> List[float]:
        """Single embedding request; classifies failures for the retry loop."""
        url = f"{self.base_url}/models/{self.embedding_model}:embedContent"
        payload = {
            "model": f"models/{self.embedding_model}",
            "content": {"parts": [{"text": text}]},
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "gemini_embedding_request",
                    model=self.embedding_model,
                    text_length=len(text),
                )
                response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TransportError as e:
            logger.warning("gemini_embedding_transport_error", error=str(e))
            raise RetryableEmbeddingError(f"Transport error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "gemini_embedding_throttled",
                status_code=response.status_code,
            )
            raise RetryableEmbeddingError(f"Embedding request returned {response.status_code}")

        if response.status_code >= 400:
            logger.error(
                "gemini_embedding_http_error",
                status_code=response.status_code,
                body_preview=response.text[:200],
            )
            raise EmbeddingError(
                f"Embedding request rejected with status {response.status_code}",
                {"status_code": response.status_code},
            )

        try:
            values = response.json()["embedding"]["values"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

        if not values:
            raise EmbeddingError("Empty embedding returned")

        if self.embedding_dimension and len(values) != self.embedding_dimension:
            raise EmbeddingError(
                f"Embedding dimension mismatch: expected {self.embedding_dimension}, "
                f"got {len(values)}",
                {"model": self.embedding_model},
            )

        logger.debug(
            "gemini_embedding_response",
            model=self.embedding_model,
            dimension=len(values),
        )
        return values

    async def generate(self, prompt: str) -> str:
        """Send a single-turn prompt to the generation model.

        Args:
            prompt: Full prompt text

        Returns:
            Generated text, or an empty string when the model returned none

        Raises:
            GenerationError: On HTTP or transport errors
        """
        url = f"{self.base_url}/models/{self.chat_model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}

        try:
            async with self._client() as client:
                logger.info(
                    "gemini_generate_request",
                    model=self.chat_model,
                    prompt_length=len(prompt),
                )
                response = await client.post(url, params={"key": self.api_key}, json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                "gemini_generate_http_error",
                status_code=e.response.status_code,
                body_preview=e.response.text[:200],
            )
            raise GenerationError(
                f"Generation request failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("gemini_generate_connection_error", error=str(e))
            raise GenerationError(f"Generation request failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Malformed generation response: {e}") from e

        text = _extract_text(data)

        logger.info(
            "gemini_generate_response",
            model=self.chat_model,
            response_length=len(text),
        )
        return text


def _extract_text(data: dict) -> str:
    """Join the text parts of the first candidate, tolerating missing fields."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


# Global client instance
gemini_client = GeminiClient()
