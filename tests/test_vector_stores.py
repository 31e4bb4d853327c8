"""Tests for the vector store backends."""
import json

import httpx
import pytest

from apex_rag.errors import VectorStoreError
from apex_rag.rag.store_base import VectorRecord, get_vector_store
from apex_rag.rag.store_faiss import FAISSVectorStore
from apex_rag.rag.store_pinecone import PineconeVectorStore
from tests.fakes import InMemoryVectorStore


def _records(count: int, dimension: int = 3):
    return [
        VectorRecord(
            id=f"chunk-{i}",
            values=[float(i + 1)] + [0.0] * (dimension - 1),
            metadata={"text": f"text {i}", "pageTitle": "Maps"},
        )
        for i in range(count)
    ]


# Base batching


@pytest.mark.asyncio
async def test_upsert_splits_into_fixed_size_batches():
    store = InMemoryVectorStore(batch_size=100)

    written = await store.upsert(_records(250))

    assert written == 250
    assert store.batch_calls == 3
    assert store.failed_batches == 0


@pytest.mark.asyncio
async def test_failed_batch_is_skipped_and_later_batches_run():
    store = InMemoryVectorStore(batch_size=2, fail_batches=[1])

    written = await store.upsert(_records(5))

    assert written == 3
    assert store.batch_calls == 3
    assert store.failed_batches == 1
    assert sorted(store.records) == ["chunk-2", "chunk-3", "chunk-4"]


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError, match="Unknown vector backend"):
        get_vector_store("chroma")


# Pinecone


def _pinecone(handler, namespace: str = "") -> PineconeVectorStore:
    return PineconeVectorStore(
        host="https://apex-index.svc.pinecone.test/",
        api_key="pc-key",
        namespace=namespace,
        batch_size=2,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_pinecone_upsert_request_shape():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"upsertedCount": 2})

    written = await _pinecone(handler).upsert(_records(3))

    assert written == 3
    assert len(requests) == 2
    first = requests[0]
    assert str(first.url) == "https://apex-index.svc.pinecone.test/vectors/upsert"
    assert first.headers["Api-Key"] == "pc-key"
    body = json.loads(first.content)
    assert [v["id"] for v in body["vectors"]] == ["chunk-0", "chunk-1"]
    assert body["vectors"][0]["metadata"] == {"text": "text 0", "pageTitle": "Maps"}
    assert "namespace" not in body


@pytest.mark.asyncio
async def test_pinecone_upsert_failure_skips_batch():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500, text="overloaded")
        return httpx.Response(200, json={})

    store = _pinecone(handler)

    written = await store.upsert(_records(4))

    assert written == 2
    assert store.failed_batches == 1
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_pinecone_query_sorts_by_score():
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "matches": [
                    {"id": "a", "score": 0.2, "metadata": {"text": "low"}},
                    {"id": "b", "score": 0.9, "metadata": {"text": "high"}},
                    {"id": "c", "score": 0.5},
                ]
            },
        )

    matches = await _pinecone(handler, namespace="wiki").query([0.1, 0.2, 0.3], top_k=7)

    assert [m.id for m in matches] == ["b", "c", "a"]
    assert matches[1].metadata == {}
    assert captured["path"] == "/query"
    assert captured["body"] == {
        "vector": [0.1, 0.2, 0.3],
        "topK": 7,
        "includeMetadata": True,
        "namespace": "wiki",
    }


@pytest.mark.asyncio
async def test_pinecone_query_error_raises():
    def handler(request):
        return httpx.Response(401, json={"message": "bad key"})

    with pytest.raises(VectorStoreError, match="status 401"):
        await _pinecone(handler).query([0.1, 0.2, 0.3], top_k=7)


@pytest.mark.asyncio
async def test_pinecone_delete_all_and_describe():
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.path == "/describe_index_stats":
            return httpx.Response(200, json={"totalVectorCount": 42, "dimension": 768})
        return httpx.Response(200, json={})

    store = _pinecone(handler, namespace="wiki")

    await store.delete_all()
    stats = await store.describe()

    assert json.loads(requests[0].content) == {"deleteAll": True, "namespace": "wiki"}
    assert json.loads(requests[1].content) == {}
    assert stats == {"backend": "pinecone", "vector_count": 42, "dimension": 768}


# FAISS


@pytest.mark.asyncio
async def test_faiss_query_ranks_by_cosine_similarity(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=3)
    await store.upsert(
        [
            VectorRecord("north", [0.0, 1.0, 0.0], {"text": "north"}),
            VectorRecord("east", [1.0, 0.0, 0.0], {"text": "east"}),
            VectorRecord("north-east", [1.0, 1.0, 0.0], {"text": "north-east"}),
        ]
    )

    matches = await store.query([0.0, 2.0, 0.0], top_k=2)

    assert [m.id for m in matches] == ["north", "north-east"]
    assert matches[0].score == pytest.approx(1.0)
    assert matches[0].metadata == {"text": "north"}


@pytest.mark.asyncio
async def test_faiss_upsert_replaces_existing_id(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=3)
    await store.upsert([VectorRecord("chunk-1", [1.0, 0.0, 0.0], {"text": "old"})])
    await store.upsert([VectorRecord("chunk-1", [0.0, 1.0, 0.0], {"text": "new"})])

    stats = await store.describe()
    matches = await store.query([0.0, 1.0, 0.0], top_k=5)

    assert stats["vector_count"] == 1
    assert [(m.id, m.metadata["text"]) for m in matches] == [("chunk-1", "new")]


@pytest.mark.asyncio
async def test_faiss_persists_and_reloads(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=3)
    await store.upsert(_records(3))

    reloaded = FAISSVectorStore(index_dir=tmp_path, dimension=3)
    matches = await reloaded.query([1.0, 0.0, 0.0], top_k=3)

    assert (tmp_path / "vectors.index").exists()
    assert len(matches) == 3
    assert {m.id for m in matches} == {"chunk-0", "chunk-1", "chunk-2"}


@pytest.mark.asyncio
async def test_faiss_reload_with_other_dimension_fails(tmp_path):
    await FAISSVectorStore(index_dir=tmp_path, dimension=3).upsert(_records(1))

    with pytest.raises(VectorStoreError, match="Dimension mismatch"):
        await FAISSVectorStore(index_dir=tmp_path, dimension=4).describe()


@pytest.mark.asyncio
async def test_faiss_wrong_dimension_batch_is_skipped(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=3)

    written = await store.upsert(_records(2, dimension=4))

    assert written == 0
    assert store.failed_batches == 1


@pytest.mark.asyncio
async def test_faiss_delete_all_empties_index(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=3)
    await store.upsert(_records(3))

    await store.delete_all()

    assert await store.query([1.0, 0.0, 0.0], top_k=3) == []
    assert (await store.describe())["vector_count"] == 0
