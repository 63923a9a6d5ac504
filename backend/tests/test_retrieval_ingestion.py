from __future__ import annotations

import warnings

import pytest
from sqlalchemy.exc import SADeprecationWarning

from assistant.repos.document_repo import DocumentRepo
from assistant.retrieval.embedder import DeterministicEmbedder, EmbeddingError
from assistant.retrieval.types import EmbeddingDocument
from assistant.services.ingestion_service import coerce_content


class FailingEmbedder:
    """Embedder used to verify graceful fallback on embedding failures."""

    provider = "deterministic"
    model_name = "deterministic-v1"
    dimension = 64

    async def embed_texts(self, texts):
        raise EmbeddingError("forced failure for test")

    async def embed_query(self, text):
        raise EmbeddingError("forced failure for test")


@pytest.mark.anyio
async def test_ingested_document_is_searchable(app, client):
    response = await client.post(
        "/api/embeddings",
        json=[
            {
                "content": "Buddy, a golden retriever, friendly with kids",
                "metadata": {"location": "Madison"},
            },
            {"content": "Whiskers is a shy tabby cat who prefers quiet homes"},
        ],
    )
    assert response.status_code == 202
    assert response.json() == {"accepted": 2}

    await app.state.ingestion_service.wait_idle()

    results = await app.state.retrieval_service.search("friendly dog for kids", 1)
    assert len(results) == 1
    assert "Buddy" in results[0].text
    assert results[0].metadata == {"location": "Madison"}

    stats = (await client.get("/api/embeddings/stats")).json()
    assert stats["indexed_batches"] == 1
    assert stats["indexed_documents"] == 2
    assert stats["failed_batches"] == 0
    assert stats["pending_batches"] == 0


@pytest.mark.anyio
async def test_reingesting_creates_new_documents(app, client):
    payload = [{"content": "Luna is a playful husky puppy"}]
    for _ in range(2):
        response = await client.post("/api/embeddings", json=payload)
        assert response.status_code == 202
    await app.state.ingestion_service.wait_idle()

    assert await app.state.retrieval_service.count_documents() == 2
    results = await app.state.retrieval_service.search("playful husky", 5)
    assert len(results) == 2
    assert results[0].document_id != results[1].document_id
    assert results[0].score >= results[1].score


@pytest.mark.anyio
async def test_search_results_are_bounded_and_ordered(app, client):
    documents = [
        EmbeddingDocument(id=f"doc-{index}", content=text)
        for index, text in enumerate(
            [
                "beagle puppy available in Paris",
                "senior beagle looking for a calm home",
                "parrot that speaks three languages",
                "labrador puppy available in Tokyo",
            ]
        )
    ]
    await app.state.retrieval_service.index(documents)

    results = await app.state.retrieval_service.search("beagle puppy", 3)
    assert len(results) == 3
    scores = [item.score for item in results]
    assert scores == sorted(scores, reverse=True)
    assert results[0].document_id == "doc-0"

    assert await app.state.retrieval_service.search("beagle", 0) == []
    assert await app.state.retrieval_service.search("   ", 3) == []


@pytest.mark.anyio
async def test_failed_batch_is_counted_not_raised(app, client, monkeypatch):
    monkeypatch.setattr(app.state.retrieval_service, "_embedder", FailingEmbedder())

    response = await client.post("/api/embeddings", json=[{"content": "Rex"}])
    assert response.status_code == 202
    await app.state.ingestion_service.wait_idle()

    stats = (await client.get("/api/embeddings/stats")).json()
    assert stats["failed_batches"] == 1
    assert stats["indexed_batches"] == 0
    assert "forced failure" in stats["last_error"]


@pytest.mark.anyio
async def test_search_degrades_to_empty_on_embedder_failure(app, client):
    await app.state.retrieval_service.index([EmbeddingDocument(id="d1", content="Rex")])
    app.state.retrieval_service._embedder = FailingEmbedder()  # noqa: SLF001

    assert await app.state.retrieval_service.search("Rex", 4) == []


@pytest.mark.anyio
async def test_empty_batch_is_accepted_without_work(app, client):
    response = await client.post("/api/embeddings", json=[])
    assert response.status_code == 202
    assert response.json() == {"accepted": 0}
    stats = (await client.get("/api/embeddings/stats")).json()
    assert stats["submitted_batches"] == 0


def test_content_coercion():
    assert coerce_content("plain") == "plain"
    assert coerce_content({"name": "Rex", "age": 3}) == '{"name":"Rex","age":3}'
    assert coerce_content(["a", 1]) == '["a",1]'
    assert coerce_content(42) == "42"


@pytest.mark.anyio
async def test_deterministic_embedder_is_stable_and_normalized():
    embedder = DeterministicEmbedder(dimension=32)
    first, second = await embedder.embed_texts(["Friendly dog", "friendly DOG!"])
    assert first == second
    assert abs(sum(value * value for value in first) - 1.0) < 1e-9
    with pytest.raises(EmbeddingError):
        DeterministicEmbedder(dimension=0)


@pytest.mark.anyio
async def test_vector_rows_unpack_without_deprecation_warnings(app, client):
    service = app.state.retrieval_service
    await service.index([EmbeddingDocument(id="doc-rex", content="Rex the husky")])

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        async with app.state.sessionmaker() as db:
            rows = await DocumentRepo(db).list_vectors(
                provider=service.embedder.provider,
                model_name=service.embedder.model_name,
                limit=10,
            )
        results = await service.search("husky", 1)

    document, embedding = rows[0]
    assert document.id == "doc-rex"
    assert embedding.document_id == "doc-rex"
    assert [item.document_id for item in results] == ["doc-rex"]
    assert not [item for item in caught if issubclass(item.category, SADeprecationWarning)]
