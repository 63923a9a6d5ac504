from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from assistant.schemas.common import APIModel


class ChatSummaryOut(APIModel):
    """Chat-list row shown in the sidebar."""

    chat_id: str
    title: Optional[str] = Field(default=None)
    last_message: Optional[str] = Field(default=None)
    created_at: datetime


class ChatRenameRequest(APIModel):
    """Payload for renaming a chat."""

    title: str = Field(max_length=200)


class ChatMessageOut(APIModel):
    """One message of a chat's remembered history."""

    role: str
    content: str
    timestamp: datetime
