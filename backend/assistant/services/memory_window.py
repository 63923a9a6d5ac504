from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Sequence

from fastapi import Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.chat.types import ChatMessage
from assistant.repos.chat_memory_repo import ChatMemoryRepo

logger = logging.getLogger(__name__)


class MemoryWindow:
    """Bounded FIFO message history per chat.

    Appends for one chat are serialized in-process by a per-chat lock and
    across processes by the unique ``(chat_id, seq)`` constraint. Every append
    commits its messages and the eviction of the overflow together, so a
    reader never sees more than ``window_size`` rows or half an exchange.
    """

    _MAX_ATTEMPTS = 3

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], window_size: int = 20
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self._sessionmaker = sessionmaker
        self._window_size = window_size
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def window_size(self) -> int:
        return self._window_size

    async def append(self, chat_id: str, message: ChatMessage) -> None:
        await self.append_all(chat_id, [message])

    async def append_all(self, chat_id: str, messages: Sequence[ChatMessage]) -> None:
        if not messages:
            return

        async with self._lock_for(chat_id):
            for attempt in range(self._MAX_ATTEMPTS):
                try:
                    async with self._sessionmaker() as db:
                        async with db.begin():
                            repo = ChatMemoryRepo(db)
                            tail_seq = await repo.append(chat_id, messages)
                            evicted = await repo.evict_before(
                                chat_id, tail_seq - self._window_size + 1
                            )
                except IntegrityError:
                    if attempt == self._MAX_ATTEMPTS - 1:
                        raise
                    logger.warning(
                        "Memory append for chat %s collided on seq, retrying (%d)",
                        chat_id,
                        attempt + 1,
                    )
                    continue
                if evicted:
                    logger.debug("Evicted %d memory message(s) from chat %s", evicted, chat_id)
                return

    async def load(self, chat_id: str) -> list[ChatMessage]:
        """Return the remembered messages of a chat, oldest first."""

        async with self._sessionmaker() as db:
            return await ChatMemoryRepo(db).list_recent(chat_id, self._window_size)

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock


def get_memory_window(request: Request) -> MemoryWindow:
    """Dependency to access the memory window from app state."""

    return request.app.state.memory_window
