from __future__ import annotations

import json

import pytest

from assistant.providers.base import ProviderError
from assistant.services.answer_service import (
    GENERIC_ERROR_MESSAGE,
    TIMEOUT_ERROR_MESSAGE,
)


def _events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def _assert_single_terminal(events: list[dict]) -> None:
    terminal = [event for event in events if event["done"]]
    assert len(terminal) == 1
    assert events[-1] is terminal[0]


@pytest.mark.anyio
async def test_new_chat_streams_answer_and_appears_in_list(client, stub_adapter):
    response = await client.post(
        "/api/assistant/ask/stream", json={"question": "Do you have any dogs?"}
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")

    events = _events(response)
    _assert_single_terminal(events)
    chat_id = events[0]["chat_id"]
    assert events[0] == {"type": "delta", "chat_id": chat_id, "delta": "", "done": False}
    assert [event["delta"] for event in events[1:-1]] == ["Buddy ", "is ", "available."]
    assert events[-1] == {
        "type": "completed",
        "chat_id": chat_id,
        "answer": "Buddy is available.",
        "done": True,
    }

    chats = (await client.get("/api/chats")).json()
    assert len(chats) == 1
    assert chats[0]["chat_id"] == chat_id
    assert chats[0]["title"] == "Dog Adoption Chat"
    assert chats[0]["last_message"] == "Buddy is available."

    messages = (await client.get(f"/api/chats/{chat_id}/messages")).json()
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "Do you have any dogs?"),
        ("assistant", "Buddy is available."),
    ]


@pytest.mark.anyio
async def test_follow_up_uses_history_and_keeps_title(client, stub_adapter):
    first = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Any beagles?"})
    )
    chat_id = first[0]["chat_id"]

    stub_adapter.title = "Should Not Be Used"
    stub_adapter.chunks = ["Yes, ", "two."]
    second = _events(
        await client.post(
            "/api/assistant/ask/stream",
            json={"chat_id": chat_id, "question": "In Paris?"},
        )
    )
    assert second[-1]["answer"] == "Yes, two."

    prompt = stub_adapter.stream_calls[-1]
    assert prompt[0]["role"] == "system"
    assert [m["content"] for m in prompt[1:]] == [
        "Any beagles?",
        "Buddy is available.",
        "In Paris?",
    ]

    chat = (await client.get(f"/api/chats/{chat_id}")).json()
    assert chat["title"] == "Dog Adoption Chat"
    assert chat["last_message"] == "Yes, two."


@pytest.mark.anyio
async def test_retrieved_documents_reach_the_prompt(app, client, stub_adapter):
    await client.post(
        "/api/embeddings",
        json=[{"content": "Buddy, a golden retriever, friendly with kids"}],
    )
    await app.state.ingestion_service.wait_idle()

    await client.post(
        "/api/assistant/ask/stream", json={"question": "friendly dog for kids"}
    )

    system_prompt = stub_adapter.stream_calls[-1][0]["content"]
    assert "Pooch Palace" in system_prompt
    assert "Buddy, a golden retriever, friendly with kids" in system_prompt
    assert stub_adapter.tool_specs[-1][0]["name"] == "schedule_dog_adoption"


@pytest.mark.anyio
async def test_generation_timeout_emits_error_and_skips_memory(app_factory, client_for, stub_adapter):
    app = app_factory(GENERATION_TIMEOUT_SEC="0.2")
    stub_adapter.stall_after = 1

    async with client_for(app) as client:
        response = await client.post(
            "/api/assistant/ask/stream", json={"question": "Tell me about Buddy"}
        )
        events = _events(response)
        _assert_single_terminal(events)
        chat_id = events[0]["chat_id"]
        assert [event.get("delta") for event in events[:-1]] == ["", "Buddy "]
        assert events[-1] == {
            "type": "error",
            "chat_id": chat_id,
            "error": TIMEOUT_ERROR_MESSAGE,
            "done": True,
        }
        assert stub_adapter.closed

        messages = (await client.get(f"/api/chats/{chat_id}/messages")).json()
        assert messages == []
        chat = (await client.get(f"/api/chats/{chat_id}")).json()
        assert chat["title"] is None
        assert chat["last_message"] == "Tell me about Buddy"


@pytest.mark.anyio
async def test_provider_failure_emits_error_after_partial_output(client, stub_adapter):
    stub_adapter.stream_error = ProviderError(
        "PROVIDER_UPSTREAM", "Provider returned 500: boom", retryable=True, status_code=500
    )

    events = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Any dogs?"})
    )

    _assert_single_terminal(events)
    assert [event["delta"] for event in events[1:-1]] == ["Buddy ", "is ", "available."]
    assert events[-1]["type"] == "error"
    assert events[-1]["error"] == "Provider returned 500: boom"

    chat_id = events[0]["chat_id"]
    assert (await client.get(f"/api/chats/{chat_id}/messages")).json() == []


@pytest.mark.anyio
async def test_unexpected_failure_uses_exception_text(client, stub_adapter):
    stub_adapter.stream_error = RuntimeError("")

    events = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Any dogs?"})
    )
    assert events[-1]["error"] == GENERIC_ERROR_MESSAGE


@pytest.mark.anyio
async def test_blank_answer_completes_without_persisting(client, stub_adapter):
    stub_adapter.chunks = ["", "   "]

    events = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Anyone there?"})
    )

    assert events[-1] == {"type": "completed", "chat_id": events[0]["chat_id"], "done": True}
    assert [event["delta"] for event in events[:-1]] == ["", "   "]
    chat_id = events[0]["chat_id"]
    assert (await client.get(f"/api/chats/{chat_id}/messages")).json() == []
    assert (await client.get(f"/api/chats/{chat_id}")).json()["title"] is None


@pytest.mark.anyio
async def test_summarizer_failure_leaves_chat_untitled(client, stub_adapter):
    stub_adapter.generate_error = ProviderError("PROVIDER_UPSTREAM", "down", retryable=True)

    events = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Any dogs?"})
    )
    assert events[-1]["type"] == "completed"

    chat = (await client.get(f"/api/chats/{events[0]['chat_id']}")).json()
    assert chat["title"] is None
    assert chat["last_message"] == "Buddy is available."


@pytest.mark.anyio
async def test_retrieval_failure_still_answers(app, client, monkeypatch):
    async def failing_embed(text):
        raise RuntimeError("embedding backend offline")

    monkeypatch.setattr(app.state.retrieval_service.embedder, "embed_query", failing_embed)

    events = _events(
        await client.post("/api/assistant/ask/stream", json={"question": "Any dogs?"})
    )
    assert events[-1]["type"] == "completed"
    assert events[-1]["answer"] == "Buddy is available."


@pytest.mark.anyio
async def test_closing_the_stream_cancels_generation(app, client, stub_adapter):
    stub_adapter.stall_after = 1
    service = app.state.answer_service

    context = await service.open_chat("alice", None, "Tell me about Buddy")
    stream = service.stream(context)
    opening = await stream.__anext__()
    first = await stream.__anext__()
    assert (opening.delta, first.delta) == ("", "Buddy ")

    await stream.aclose()

    assert stub_adapter.closed
    assert await app.state.memory_window.load(context.chat.chat_id) == []
    chat = await app.state.chat_directory_service.get(context.chat.chat_id, "alice")
    assert chat.title is None


@pytest.mark.anyio
async def test_non_streaming_ask(client, stub_adapter):
    response = await client.post("/api/assistant/ask", json={"question": "Any dogs?"})
    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == "Buddy is available."
    assert body["chat_id"]

    stub_adapter.stream_error = ProviderError("PROVIDER_UPSTREAM", "upstream down")
    response = await client.post(
        "/api/assistant/ask", json={"chat_id": body["chat_id"], "question": "More?"}
    )
    assert response.status_code == 502
    assert response.json()["detail"] == "upstream down"
