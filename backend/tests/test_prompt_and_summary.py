from __future__ import annotations

import asyncio

import pytest

from assistant.chat.types import ChatMessage
from assistant.providers.base import LLMResult, ProviderRuntimeConfig
from assistant.retrieval.types import RetrievedSnippet
from assistant.services.prompt_builder import PromptBuilder
from assistant.services.summarizer import SUMMARY_SYSTEM_PROMPT, Summarizer


def _snippet(text: str, score: float = 0.5) -> RetrievedSnippet:
    return RetrievedSnippet(text=text, score=score, document_id="doc")


def test_prompt_orders_system_history_then_question():
    builder = PromptBuilder("You are a helpful shelter assistant.")
    history = [ChatMessage.user("Hi"), ChatMessage.assistant("Hello!")]

    messages = builder.build_messages("Any beagles?", history, [_snippet("Buddy is a beagle.")])

    assert [message["role"] for message in messages] == ["system", "user", "assistant", "user"]
    assert messages[0]["content"].startswith("You are a helpful shelter assistant.")
    assert "- Buddy is a beagle." in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "Any beagles?"}


def test_prompt_without_snippets_marks_empty_context():
    messages = PromptBuilder("Be kind.").build_messages("Hello?")
    assert "(none)" in messages[0]["content"]
    assert len(messages) == 2


def test_context_is_deduplicated_and_bounded():
    builder = PromptBuilder("Prompt", retrieval_max_chars=200)
    snippets = [
        _snippet("Buddy   is a\nbeagle."),
        _snippet("buddy is a beagle."),
        _snippet("x" * 190),
        _snippet("Luna is a husky."),
    ]

    system = builder.build_messages("q", (), snippets)[0]["content"]

    assert system.count("beagle") == 1
    assert "x" * 190 not in system
    assert "Luna" not in system


class FakeProviderService:
    def __init__(self, adapter) -> None:
        self.adapter = adapter

    def get_summary_config(self):
        return self.adapter, ProviderRuntimeConfig(provider="mock", model_name="titles")


class TitleAdapter:
    def __init__(self, content: str = "", delay: float = 0.0, error: Exception | None = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.messages: list[dict] = []

    async def generate(self, cfg, messages):
        self.messages = messages
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return LLMResult(content=self.content, model_provider=cfg.provider, model_name=cfg.model_name)


@pytest.mark.anyio
async def test_summarizer_returns_clean_title():
    adapter = TitleAdapter('  "Beagle   Adoption Questions"  ')
    title = await Summarizer(FakeProviderService(adapter)).summarize("Any beagles?", "Yes, Buddy.")

    assert title == "Beagle Adoption Questions"
    assert adapter.messages[0] == {"role": "system", "content": SUMMARY_SYSTEM_PROMPT}
    assert "Any beagles?" in adapter.messages[1]["content"]
    assert "Yes, Buddy." in adapter.messages[1]["content"]


@pytest.mark.anyio
async def test_summarizer_abbreviates_long_titles():
    adapter = TitleAdapter("Everything About Adopting Senior Dogs From Shelters")
    title = await Summarizer(FakeProviderService(adapter), title_max_chars=20).summarize("q", "a")
    assert title == "Everything About ..."
    assert len(title) == 20


@pytest.mark.anyio
@pytest.mark.parametrize(
    "adapter",
    [
        TitleAdapter("   "),
        TitleAdapter(error=RuntimeError("down")),
        TitleAdapter("Too Slow", delay=5),
    ],
)
async def test_summarizer_failures_yield_none(adapter):
    summarizer = Summarizer(FakeProviderService(adapter), timeout_sec=0.05)
    assert await summarizer.summarize("q", "a") is None
