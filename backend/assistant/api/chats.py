from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from assistant.api.deps import require_user_id
from assistant.core.security import sanitize_text
from assistant.schemas.chat import ChatMessageOut, ChatRenameRequest, ChatSummaryOut
from assistant.services.chat_directory_service import (
    ChatDirectoryService,
    ChatNotFoundError,
    get_chat_directory_service,
)
from assistant.services.memory_window import MemoryWindow, get_memory_window

router = APIRouter(prefix="/api/chats", tags=["chats"])

MAX_TITLE_LEN = 200


@router.get("", response_model=List[ChatSummaryOut])
async def list_chats(
    user_id: str = Depends(require_user_id),
    directory: ChatDirectoryService = Depends(get_chat_directory_service),
) -> List[ChatSummaryOut]:
    """List the caller's chats, newest first."""

    chats = await directory.list_by_user(user_id)
    return [ChatSummaryOut.model_validate(chat) for chat in chats]


@router.get("/{chat_id}", response_model=ChatSummaryOut)
async def get_chat(
    chat_id: str,
    user_id: str = Depends(require_user_id),
    directory: ChatDirectoryService = Depends(get_chat_directory_service),
) -> ChatSummaryOut:
    try:
        chat = await directory.get(chat_id, user_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    return ChatSummaryOut.model_validate(chat)


@router.get("/{chat_id}/messages", response_model=List[ChatMessageOut])
async def list_chat_messages(
    chat_id: str,
    user_id: str = Depends(require_user_id),
    directory: ChatDirectoryService = Depends(get_chat_directory_service),
    memory_window: MemoryWindow = Depends(get_memory_window),
) -> List[ChatMessageOut]:
    """Return the remembered history of one chat, oldest first."""

    try:
        await directory.get(chat_id, user_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    messages = await memory_window.load(chat_id)
    return [ChatMessageOut.model_validate(message) for message in messages]


@router.patch("/{chat_id}", response_model=ChatSummaryOut)
async def rename_chat(
    chat_id: str,
    payload: ChatRenameRequest,
    user_id: str = Depends(require_user_id),
    directory: ChatDirectoryService = Depends(get_chat_directory_service),
) -> ChatSummaryOut:
    title = sanitize_text(payload.title, MAX_TITLE_LEN)
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title must not be empty")
    try:
        chat = await directory.rename(chat_id, user_id, title)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    return ChatSummaryOut.model_validate(chat)
