from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from assistant.utils.time_utils import utc_now

DEFAULT_LAST_MESSAGE_MAX_CHARS = 60
PREVIEW_MARKER = "..."


def truncate_preview(
    text: Optional[str], max_chars: int = DEFAULT_LAST_MESSAGE_MAX_CHARS
) -> Optional[str]:
    """Clamp a message to the chat-list preview length.

    Longer text is cut to ``max_chars - 3`` characters, stripped, and suffixed
    with ``"..."``; whitespace at the cut point can make the result shorter.
    """

    if text is None or len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)].strip() + PREVIEW_MARKER


@dataclass(frozen=True)
class ChatSession:
    """Immutable view of a chat session.

    A session built by ``new_chat`` is a draft: it has no ``chat_id`` until the
    store persists it. Every change returns a new value; ``chat_id`` and
    ``created_at`` are carried over untouched.
    """

    chat_id: Optional[str]
    user_id: str
    title: Optional[str]
    last_message: Optional[str]
    created_at: datetime

    @classmethod
    def new_chat(
        cls,
        user_id: str,
        last_message: Optional[str],
        max_preview_chars: int = DEFAULT_LAST_MESSAGE_MAX_CHARS,
    ) -> "ChatSession":
        return cls(
            chat_id=None,
            user_id=user_id,
            title=None,
            last_message=truncate_preview(last_message, max_preview_chars),
            created_at=utc_now(),
        )

    @property
    def is_draft(self) -> bool:
        return self.chat_id is None

    def with_id(self, chat_id: str) -> "ChatSession":
        if self.chat_id is not None:
            raise ValueError("Chat identifier is already assigned")
        return replace(self, chat_id=chat_id)

    def with_title(self, title: Optional[str]) -> "ChatSession":
        return replace(self, title=title)

    def with_last_message(
        self, message: Optional[str], max_preview_chars: int = DEFAULT_LAST_MESSAGE_MAX_CHARS
    ) -> "ChatSession":
        return replace(self, last_message=truncate_preview(message, max_preview_chars))


@dataclass(frozen=True)
class ChatMessage:
    """One memory-window entry."""

    role: str
    content: str
    timestamp: datetime

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content, timestamp=utc_now())

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role="assistant", content=content, timestamp=utc_now())

    def to_prompt(self) -> dict:
        return {"role": self.role, "content": self.content}
