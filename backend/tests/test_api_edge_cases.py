from __future__ import annotations

import json

import pytest

from assistant.utils.ids import new_time_ordered_id


@pytest.mark.anyio
async def test_missing_user_header_returns_400(client):
    response = await client.get("/api/chats", headers={"X-User-Id": "  "})
    assert response.status_code == 400

    response = await client.post(
        "/api/assistant/ask/stream",
        json={"question": "hi"},
        headers={"X-User-Id": ""},
    )
    assert response.status_code == 400


@pytest.mark.anyio
async def test_blank_question_returns_400_and_creates_nothing(client):
    response = await client.post("/api/assistant/ask/stream", json={"question": "   "})
    assert response.status_code == 400
    assert (await client.get("/api/chats")).json() == []


@pytest.mark.anyio
async def test_malformed_body_returns_422(client):
    response = await client.post("/api/assistant/ask/stream", json={"chat_id": "x"})
    assert response.status_code == 422


@pytest.mark.anyio
async def test_unknown_chat_returns_404(client):
    unknown = new_time_ordered_id()
    response = await client.post(
        "/api/assistant/ask/stream", json={"chat_id": unknown, "question": "hi"}
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Chat not found"

    assert (await client.get(f"/api/chats/{unknown}")).status_code == 404
    assert (await client.get(f"/api/chats/{unknown}/messages")).status_code == 404


@pytest.mark.anyio
async def test_chats_are_isolated_between_users(client):
    events = await client.post("/api/assistant/ask/stream", json={"question": "Any dogs?"})
    chat_id = json.loads(events.text.splitlines()[0])["chat_id"]

    bob = {"X-User-Id": "bob"}
    assert (await client.get("/api/chats", headers=bob)).json() == []
    assert (await client.get(f"/api/chats/{chat_id}", headers=bob)).status_code == 404
    response = await client.patch(f"/api/chats/{chat_id}", json={"title": "Mine"}, headers=bob)
    assert response.status_code == 404
    response = await client.post(
        "/api/assistant/ask/stream",
        json={"chat_id": chat_id, "question": "hello?"},
        headers=bob,
    )
    assert response.status_code == 404

    chat = (await client.get(f"/api/chats/{chat_id}")).json()
    assert chat["title"] == "Dog Adoption Chat"


@pytest.mark.anyio
async def test_rename_chat(client):
    response = await client.post("/api/assistant/ask", json={"question": "Any dogs?"})
    chat_id = response.json()["chat_id"]

    response = await client.patch(f"/api/chats/{chat_id}", json={"title": "  Beagles  "})
    assert response.status_code == 200
    assert response.json()["title"] == "Beagles"
    assert response.json()["chat_id"] == chat_id

    response = await client.patch(f"/api/chats/{chat_id}", json={"title": "   "})
    assert response.status_code == 400
    assert (await client.get(f"/api/chats/{chat_id}")).json()["title"] == "Beagles"


@pytest.mark.anyio
async def test_null_embedding_content_returns_422(app, client):
    response = await client.post(
        "/api/embeddings", json=[{"content": "Rex is a husky."}, {"content": None}]
    )
    assert response.status_code == 422

    response = await client.post("/api/embeddings", json=[{"metadata": {"breed": "husky"}}])
    assert response.status_code == 422

    stats = (await client.get("/api/embeddings/stats")).json()
    assert stats["submitted_batches"] == 0
    assert await app.state.retrieval_service.count_documents() == 0


@pytest.mark.anyio
async def test_falsy_embedding_content_is_accepted(app, client):
    response = await client.post("/api/embeddings", json=[{"content": 0}, {"content": ""}])
    assert response.status_code == 202
    assert response.json() == {"accepted": 2}
