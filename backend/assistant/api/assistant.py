from __future__ import annotations

from contextlib import aclosing
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from assistant.api.deps import require_user_id
from assistant.schemas.assistant import AskRequest, AskResponse
from assistant.services.answer_service import (
    AnswerContext,
    AnswerService,
    GenerationFailedError,
    InvalidQuestionError,
    get_answer_service,
)
from assistant.services.chat_directory_service import ChatNotFoundError

router = APIRouter(prefix="/api/assistant", tags=["assistant"])


@router.post("/ask/stream")
async def ask_stream(
    payload: AskRequest,
    user_id: str = Depends(require_user_id),
    service: AnswerService = Depends(get_answer_service),
) -> StreamingResponse:
    """Stream the answer as newline-delimited JSON events."""

    context = await _open_chat(service, user_id, payload)

    async def body() -> AsyncIterator[str]:
        async with aclosing(service.stream(context)) as events:
            async for event in events:
                yield event.to_ndjson()

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.post("/ask", response_model=AskResponse)
async def ask(
    payload: AskRequest,
    user_id: str = Depends(require_user_id),
    service: AnswerService = Depends(get_answer_service),
) -> AskResponse:
    """Answer a question and return the whole reply at once."""

    context = await _open_chat(service, user_id, payload)
    try:
        chat_id, answer = await service.ask(context)
    except GenerationFailedError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return AskResponse(chat_id=chat_id, answer=answer)


async def _open_chat(service: AnswerService, user_id: str, payload: AskRequest) -> AnswerContext:
    try:
        return await service.open_chat(user_id, payload.chat_id, payload.question)
    except InvalidQuestionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
