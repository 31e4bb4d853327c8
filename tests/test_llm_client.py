"""Tests for the Gemini client using a mocked HTTP transport."""
import json

import httpx
import pytest

from apex_rag.errors import EmbeddingError, GenerationError
from apex_rag.llm_client import GeminiClient

EMBEDDING = {"embedding": {"values": [0.1, 0.2, 0.3]}}


def _client(handler) -> GeminiClient:
    return GeminiClient(
        api_key="test-key",
        base_url="https://gemini.test/v1beta",
        chat_model="chat-model",
        embedding_model="embed-model",
        embedding_dimension=3,
        max_attempts=3,
        retry_base_delay=0,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _sequence(*responses):
    """Handler that replays responses in order and records the requests."""
    requests = []
    remaining = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        response = remaining.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    return handler, requests


@pytest.mark.asyncio
async def test_embed_sends_expected_request():
    handler, requests = _sequence(httpx.Response(200, json=EMBEDDING))

    values = await _client(handler).embed("How much health does Lifeline have?")

    assert values == [0.1, 0.2, 0.3]
    request = requests[0]
    assert request.url.path == "/v1beta/models/embed-model:embedContent"
    assert request.url.params["key"] == "test-key"
    assert json.loads(request.content) == {
        "model": "models/embed-model",
        "content": {"parts": [{"text": "How much health does Lifeline have?"}]},
    }


@pytest.mark.asyncio
async def test_embed_retries_rate_limits_until_success():
    handler, requests = _sequence(
        httpx.Response(429),
        httpx.Response(429),
        httpx.Response(200, json=EMBEDDING),
    )

    values = await _client(handler).embed("text")

    assert values == [0.1, 0.2, 0.3]
    assert len(requests) == 3


@pytest.mark.asyncio
async def test_embed_backoff_doubles_from_base_delay():
    handler, requests = _sequence(
        httpx.Response(429),
        httpx.Response(429),
        httpx.Response(200, json=EMBEDDING),
    )
    waits = []

    async def record_sleep(seconds):
        waits.append(seconds)

    client = GeminiClient(
        api_key="test-key",
        base_url="https://gemini.test/v1beta",
        embedding_model="embed-model",
        embedding_dimension=3,
        max_attempts=3,
        retry_base_delay=0.5,
        transport=httpx.MockTransport(handler),
        sleep=record_sleep,
    )

    assert await client.embed("text") == [0.1, 0.2, 0.3]
    assert waits == [0.5, 1.0]
    assert len(requests) == 3


@pytest.mark.asyncio
async def test_embed_gives_up_after_max_attempts():
    handler, requests = _sequence(
        httpx.Response(429),
        httpx.Response(429),
        httpx.Response(429),
    )

    with pytest.raises(EmbeddingError, match="after 3 attempts"):
        await _client(handler).embed("text")

    assert len(requests) == 3


@pytest.mark.asyncio
async def test_embed_retries_server_and_transport_errors():
    handler, requests = _sequence(
        httpx.ConnectError("connection refused"),
        httpx.Response(503),
        httpx.Response(200, json=EMBEDDING),
    )

    assert await _client(handler).embed("text") == [0.1, 0.2, 0.3]
    assert len(requests) == 3


@pytest.mark.asyncio
async def test_embed_does_not_retry_client_errors():
    handler, requests = _sequence(httpx.Response(400, json={"error": "bad request"}))

    with pytest.raises(EmbeddingError, match="status 400"):
        await _client(handler).embed("text")

    assert len(requests) == 1


@pytest.mark.asyncio
async def test_embed_rejects_dimension_mismatch():
    handler, requests = _sequence(
        httpx.Response(200, json={"embedding": {"values": [0.1, 0.2]}})
    )

    with pytest.raises(EmbeddingError, match="dimension mismatch"):
        await _client(handler).embed("text")

    assert len(requests) == 1


@pytest.mark.asyncio
async def test_embed_rejects_malformed_body():
    handler, _ = _sequence(httpx.Response(200, json={"unexpected": True}))

    with pytest.raises(EmbeddingError, match="Malformed"):
        await _client(handler).embed("text")


@pytest.mark.asyncio
async def test_generate_returns_joined_candidate_text():
    body = {
        "candidates": [
            {"content": {"parts": [{"text": '{"answer": "100",'}, {"text": ' "sources": []}'}]}}
        ]
    }
    handler, requests = _sequence(httpx.Response(200, json=body))

    text = await _client(handler).generate("prompt text")

    assert text == '{"answer": "100", "sources": []}'
    assert requests[0].url.path == "/v1beta/models/chat-model:generateContent"
    assert json.loads(requests[0].content) == {"contents": [{"parts": [{"text": "prompt text"}]}]}


@pytest.mark.asyncio
async def test_generate_without_candidates_returns_empty_string():
    handler, _ = _sequence(httpx.Response(200, json={"candidates": []}))

    assert await _client(handler).generate("prompt") == ""


@pytest.mark.asyncio
async def test_generate_http_error_raises_generation_error():
    handler, _ = _sequence(httpx.Response(500, text="upstream exploded"))

    with pytest.raises(GenerationError, match="status 500"):
        await _client(handler).generate("prompt")


@pytest.mark.asyncio
async def test_generate_transport_error_raises_generation_error():
    handler, _ = _sequence(httpx.ConnectError("unreachable"))

    with pytest.raises(GenerationError):
        await _client(handler).generate("prompt")
