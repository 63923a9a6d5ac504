from __future__ import annotations

from typing import Iterable, List

from assistant.chat.types import ChatMessage
from assistant.retrieval.types import RetrievedSnippet


class PromptBuilder:
    """Compose chat messages for answer generation."""

    def __init__(self, system_prompt: str, retrieval_max_chars: int = 4000) -> None:
        self._system_prompt = system_prompt.strip()
        self._retrieval_max_chars = max(200, retrieval_max_chars)

    def build_messages(
        self,
        question: str,
        history: Iterable[ChatMessage] = (),
        snippets: Iterable[RetrievedSnippet] | None = None,
    ) -> List[dict]:
        """Create the message list: system prompt with context, history, then the question."""

        context_section = self._build_context_section(snippets)
        system_content = (
            f"{self._system_prompt}\n\n"
            "Context information is below.\n"
            "---------------------\n"
            f"{context_section or '(none)'}\n"
            "---------------------"
        )
        messages: List[dict] = [{"role": "system", "content": system_content}]
        messages.extend(message.to_prompt() for message in history)
        messages.append({"role": "user", "content": question})
        return messages

    def _build_context_section(self, snippets: Iterable[RetrievedSnippet] | None) -> str:
        if not snippets:
            return ""

        lines: list[str] = []
        seen: set[str] = set()
        total_chars = 0
        for snippet in snippets:
            text = " ".join(snippet.text.split())
            if not text:
                continue
            dedupe_key = text.casefold()
            if dedupe_key in seen:
                continue
            projected_chars = total_chars + len(text)
            if projected_chars > self._retrieval_max_chars:
                break
            lines.append(f"- {text}")
            seen.add(dedupe_key)
            total_chars = projected_chars

        return "\n".join(lines)
