from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.chat.types import DEFAULT_LAST_MESSAGE_MAX_CHARS, ChatSession
from assistant.repos.chat_repo import ChatRepo

logger = logging.getLogger(__name__)


class ChatNotFoundError(LookupError):
    """Raised when a chat does not exist or belongs to another user."""

    def __init__(self, chat_id: Optional[str]) -> None:
        super().__init__("Chat not found")
        self.chat_id = chat_id


class ChatDirectoryService:
    """Owner-scoped CRUD over chat sessions."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        last_message_max_chars: int = DEFAULT_LAST_MESSAGE_MAX_CHARS,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._preview_chars = last_message_max_chars

    async def create(self, user_id: str, initial_message: Optional[str]) -> ChatSession:
        """Persist a fresh, untitled chat seeded with its first message."""

        draft = ChatSession.new_chat(user_id, initial_message, self._preview_chars)
        async with self._sessionmaker() as db:
            async with db.begin():
                chat = await ChatRepo(db).save(draft)
        logger.info("Created chat %s for user %s", chat.chat_id, user_id)
        return chat

    async def get(self, chat_id: str, user_id: str) -> ChatSession:
        async with self._sessionmaker() as db:
            chat = await ChatRepo(db).get_for_user(chat_id, user_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def list_by_user(self, user_id: str) -> list[ChatSession]:
        async with self._sessionmaker() as db:
            return await ChatRepo(db).list_by_user(user_id)

    async def rename(self, chat_id: str, user_id: str, new_title: str) -> ChatSession:
        """Replace the title only; the preview is left as stored."""

        async with self._sessionmaker() as db:
            async with db.begin():
                repo = ChatRepo(db)
                current = await self._get_owned(repo, chat_id, user_id)
                renamed = current.with_title(new_title)
                chat = await repo.update_title(chat_id, user_id, renamed.title)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def update_preview(self, chat_id: str, user_id: str, new_message: str) -> ChatSession:
        """Replace the chat-list preview, clamped to the preview length."""

        async with self._sessionmaker() as db:
            async with db.begin():
                repo = ChatRepo(db)
                current = await self._get_owned(repo, chat_id, user_id)
                updated = current.with_last_message(new_message, self._preview_chars)
                chat = await repo.update_last_message(chat_id, user_id, updated.last_message)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    @staticmethod
    async def _get_owned(repo: ChatRepo, chat_id: str, user_id: str) -> ChatSession:
        chat = await repo.get_for_user(chat_id, user_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat


def get_chat_directory_service(request: Request) -> ChatDirectoryService:
    """Dependency to access the chat directory from app state."""

    return request.app.state.chat_directory_service
