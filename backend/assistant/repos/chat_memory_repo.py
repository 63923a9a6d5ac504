from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from assistant.chat.types import ChatMessage
from assistant.db.models import ChatMemoryMessage
from assistant.utils.ids import new_time_ordered_id
from assistant.utils.time_utils import ensure_utc


class ChatMemoryRepo:
    """Repository for per-chat memory window rows."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _max_seq(self, chat_id: str) -> int:
        result = await self._db.execute(
            select(func.max(ChatMemoryMessage.seq)).where(ChatMemoryMessage.chat_id == chat_id)
        )
        return int(result.scalar_one() or 0)

    async def append(self, chat_id: str, messages: Sequence[ChatMessage]) -> int:
        """Append messages after the current tail and return the new tail seq."""

        seq = await self._max_seq(chat_id)
        for message in messages:
            seq += 1
            self._db.add(
                ChatMemoryMessage(
                    id=new_time_ordered_id(),
                    chat_id=chat_id,
                    seq=seq,
                    role=message.role,
                    content=message.content,
                    created_at=message.timestamp,
                )
            )
        await self._db.flush()
        return seq

    async def evict_before(self, chat_id: str, min_seq: int) -> int:
        """Delete rows older than min_seq and return how many were removed."""

        result = await self._db.execute(
            delete(ChatMemoryMessage).where(
                ChatMemoryMessage.chat_id == chat_id,
                ChatMemoryMessage.seq < min_seq,
            )
        )
        return int(result.rowcount or 0)

    async def list_recent(self, chat_id: str, limit: int) -> list[ChatMessage]:
        """Return the newest messages of a chat in ascending order."""

        result = await self._db.execute(
            select(ChatMemoryMessage)
            .where(ChatMemoryMessage.chat_id == chat_id)
            .order_by(ChatMemoryMessage.seq.desc())
            .limit(limit)
        )
        rows = list(result.scalars())
        rows.reverse()
        return [
            ChatMessage(
                role=row.role,
                content=row.content,
                timestamp=ensure_utc(row.created_at),
            )
            for row in rows
        ]
