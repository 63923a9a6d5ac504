from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from assistant.schemas.common import APIModel

StreamEventType = Literal["delta", "completed", "error"]


class AskRequest(APIModel):
    """Question for the assistant, optionally continuing an existing chat."""

    chat_id: Optional[str] = Field(default=None, max_length=64)
    question: str


class AskResponse(APIModel):
    """Non-streaming assistant answer."""

    chat_id: str
    answer: Optional[str] = Field(default=None)


class StreamEvent(APIModel):
    """One unit of a streamed answer.

    ``delta`` events carry a text fragment; ``completed`` and ``error`` are
    terminal and close the stream.
    """

    type: StreamEventType
    chat_id: Optional[str] = Field(default=None)
    delta: Optional[str] = Field(default=None)
    answer: Optional[str] = Field(default=None)
    done: bool = False
    error: Optional[str] = Field(default=None)

    @classmethod
    def delta_event(cls, chat_id: str, delta: str) -> "StreamEvent":
        return cls(type="delta", chat_id=chat_id, delta=delta, done=False)

    @classmethod
    def completed_event(cls, chat_id: str, answer: Optional[str]) -> "StreamEvent":
        return cls(type="completed", chat_id=chat_id, answer=answer, done=True)

    @classmethod
    def error_event(cls, chat_id: Optional[str], message: str) -> "StreamEvent":
        return cls(type="error", chat_id=chat_id, error=message, done=True)

    def to_ndjson(self) -> str:
        return self.model_dump_json(exclude_none=True) + "\n"
