from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assistant.chat.types import ChatSession
from assistant.db.models import Chat
from assistant.utils.ids import new_time_ordered_id
from assistant.utils.time_utils import ensure_utc


class ChatRepo:
    """Repository for chat session persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def save(self, session: ChatSession) -> ChatSession:
        """Insert a draft session or replace the mutable fields of a stored one.

        Drafts receive their identifier here, inside the write, so no caller
        ever observes a persisted session without one.
        """

        if session.is_draft:
            persisted = session.with_id(new_time_ordered_id())
            self._db.add(
                Chat(
                    chat_id=persisted.chat_id,
                    user_id=persisted.user_id,
                    title=persisted.title,
                    last_message=persisted.last_message,
                    created_at=persisted.created_at,
                )
            )
            await self._db.flush()
            return persisted

        updated = await self._update_fields(
            session.chat_id,
            session.user_id,
            title=session.title,
            last_message=session.last_message,
        )
        if updated is None:
            raise LookupError(f"Chat {session.chat_id} does not exist")
        return updated

    async def get_for_user(self, chat_id: str, user_id: str) -> Optional[ChatSession]:
        """Fetch a chat only when it belongs to the given user."""

        result = await self._db.execute(
            select(Chat).where(Chat.chat_id == chat_id, Chat.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        return _to_session(row) if row else None

    async def list_by_user(self, user_id: str) -> list[ChatSession]:
        """List a user's chats, most recently created first."""

        result = await self._db.execute(
            select(Chat)
            .where(Chat.user_id == user_id)
            .order_by(Chat.created_at.desc(), Chat.chat_id.desc())
        )
        return [_to_session(row) for row in result.scalars()]

    async def update_title(
        self, chat_id: str, user_id: str, title: Optional[str]
    ) -> Optional[ChatSession]:
        """Replace the title of an owned chat."""

        return await self._update_fields(chat_id, user_id, title=title)

    async def update_last_message(
        self, chat_id: str, user_id: str, last_message: Optional[str]
    ) -> Optional[ChatSession]:
        """Replace the preview of an owned chat."""

        return await self._update_fields(chat_id, user_id, last_message=last_message)

    async def _update_fields(
        self, chat_id: Optional[str], user_id: str, **values: Optional[str]
    ) -> Optional[ChatSession]:
        result = await self._db.execute(
            update(Chat)
            .where(Chat.chat_id == chat_id, Chat.user_id == user_id)
            .values(**values)
        )
        if result.rowcount == 0:
            return None
        await self._db.flush()
        refreshed = await self._db.execute(
            select(Chat)
            .where(Chat.chat_id == chat_id)
            .execution_options(populate_existing=True)
        )
        return _to_session(refreshed.scalar_one())


def _to_session(row: Chat) -> ChatSession:
    return ChatSession(
        chat_id=row.chat_id,
        user_id=row.user_id,
        title=row.title,
        last_message=row.last_message,
        created_at=ensure_utc(row.created_at),
    )
