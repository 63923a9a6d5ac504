from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional, Union

from fastapi import Request

from assistant.chat.types import ChatMessage, ChatSession
from assistant.core.security import sanitize_text
from assistant.providers.base import LLMAdapter, ProviderError, ProviderRuntimeConfig
from assistant.schemas.assistant import StreamEvent
from assistant.services.chat_directory_service import ChatDirectoryService
from assistant.services.memory_window import MemoryWindow
from assistant.services.prompt_builder import PromptBuilder
from assistant.services.provider_service import ProviderService
from assistant.services.retrieval_service import RetrievalService
from assistant.services.summarizer import Summarizer
from assistant.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Unexpected error while contacting the assistant"
TIMEOUT_ERROR_MESSAGE = "The assistant took too long to answer"


class AnswerPhase(str, Enum):
    INIT = "init"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidQuestionError(ValueError):
    """Raised when the caller identity or the question is unusable."""


class GenerationFailedError(RuntimeError):
    """Raised by the non-streaming path when the answer stream ends in error."""

    def __init__(self, chat_id: Optional[str], message: str) -> None:
        super().__init__(message)
        self.chat_id = chat_id
        self.message = message


@dataclass(frozen=True)
class AnswerContext:
    """A resolved chat plus the sanitized question to answer in it."""

    chat: ChatSession
    question: str


@dataclass(frozen=True)
class _ProducerFailure:
    error: BaseException


_STREAM_END = object()

_QueueItem = Union[str, _ProducerFailure, object]


class AnswerService:
    """Turn one question into a streamed, retrieval-augmented answer.

    ``open_chat`` resolves or creates the chat before anything is streamed.
    ``stream`` then yields an opening empty delta, one delta per generated
    fragment and exactly one terminal event, unless the consumer closes the
    stream first, in which case generation is cancelled and nothing is
    persisted.
    """

    _QUEUE_MAXSIZE = 64

    def __init__(
        self,
        *,
        chat_directory: ChatDirectoryService,
        memory_window: MemoryWindow,
        retrieval: RetrievalService,
        provider_service: ProviderService,
        tool_registry: ToolRegistry,
        prompt_builder: PromptBuilder,
        summarizer: Summarizer,
        generation_timeout_sec: float = 120.0,
        retrieval_top_k: int = 4,
        max_question_chars: int = 8000,
    ) -> None:
        self._chat_directory = chat_directory
        self._memory_window = memory_window
        self._retrieval = retrieval
        self._provider_service = provider_service
        self._tool_registry = tool_registry
        self._prompt_builder = prompt_builder
        self._summarizer = summarizer
        self._generation_timeout_sec = generation_timeout_sec
        self._retrieval_top_k = retrieval_top_k
        self._max_question_chars = max_question_chars

    async def open_chat(
        self, user_id: str, chat_id: Optional[str], question: str
    ) -> AnswerContext:
        """Resolve the caller's chat, creating one seeded with the question if needed."""

        owner = (user_id or "").strip()
        if not owner:
            raise InvalidQuestionError("User id must not be empty")
        cleaned = sanitize_text(question or "", self._max_question_chars)
        if not cleaned:
            raise InvalidQuestionError("Question must not be empty")

        _log_phase(chat_id, AnswerPhase.INIT)
        if chat_id:
            chat = await self._chat_directory.get(chat_id, owner)
        else:
            chat = await self._chat_directory.create(owner, cleaned)
        return AnswerContext(chat=chat, question=cleaned)

    async def stream(self, context: AnswerContext) -> AsyncIterator[StreamEvent]:
        chat = context.chat
        chat_id = chat.chat_id
        question = context.question
        queue: asyncio.Queue[_QueueItem] = asyncio.Queue(maxsize=self._QUEUE_MAXSIZE)
        producer: Optional[asyncio.Task] = None
        parts: list[str] = []

        try:
            yield StreamEvent.delta_event(chat_id, "")
            try:
                _log_phase(chat_id, AnswerPhase.RETRIEVING)
                snippets = await self._retrieval.search(question, self._retrieval_top_k)
                history = await self._memory_window.load(chat_id)

                _log_phase(chat_id, AnswerPhase.GENERATING)
                adapter, cfg = self._provider_service.get_generation_config()
                messages = self._prompt_builder.build_messages(question, history, snippets)
                producer = asyncio.create_task(
                    self._produce(adapter, cfg, messages, queue), name=f"answer-{chat_id}"
                )

                loop = asyncio.get_running_loop()
                deadline = loop.time() + self._generation_timeout_sec
                streaming = False
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    item = await asyncio.wait_for(queue.get(), timeout=remaining)
                    if item is _STREAM_END:
                        break
                    if isinstance(item, _ProducerFailure):
                        raise item.error
                    if not item:
                        continue
                    if not streaming:
                        _log_phase(chat_id, AnswerPhase.STREAMING)
                        streaming = True
                    parts.append(item)
                    yield StreamEvent.delta_event(chat_id, item)
            except asyncio.TimeoutError:
                _log_phase(chat_id, AnswerPhase.FAILED)
                logger.warning(
                    "Generation for chat %s exceeded %.1fs", chat_id, self._generation_timeout_sec
                )
                yield StreamEvent.error_event(chat_id, TIMEOUT_ERROR_MESSAGE)
                return
            except ProviderError as exc:
                _log_phase(chat_id, AnswerPhase.FAILED)
                logger.warning("Generation for chat %s failed: %s (%s)", chat_id, exc.message, exc.code)
                yield StreamEvent.error_event(chat_id, exc.message or GENERIC_ERROR_MESSAGE)
                return
            except Exception as exc:  # noqa: BLE001
                _log_phase(chat_id, AnswerPhase.FAILED)
                logger.exception("Generation for chat %s failed", chat_id)
                yield StreamEvent.error_event(chat_id, str(exc) or GENERIC_ERROR_MESSAGE)
                return

            answer: Optional[str] = "".join(parts)
            if answer and answer.strip():
                await self._finalize(chat, question, answer)
            else:
                answer = None
            _log_phase(chat_id, AnswerPhase.COMPLETED)
            yield StreamEvent.completed_event(chat_id, answer)
        finally:
            if producer is not None and not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)

    async def ask(self, context: AnswerContext) -> tuple[str, Optional[str]]:
        """Run the stream to its end and return ``(chat_id, answer)``."""

        answer: Optional[str] = None
        async with aclosing(self.stream(context)) as events:
            async for event in events:
                if event.type == "error":
                    raise GenerationFailedError(event.chat_id, event.error or GENERIC_ERROR_MESSAGE)
                if event.type == "completed":
                    answer = event.answer
        return context.chat.chat_id, answer

    async def _produce(
        self,
        adapter: LLMAdapter,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        queue: asyncio.Queue[_QueueItem],
    ) -> None:
        tools: Optional[list[dict[str, Any]]] = self._tool_registry.specs() or None
        try:
            async with aclosing(
                adapter.stream(cfg, messages, tools=tools, call_tool=self._tool_registry.invoke)
            ) as fragments:
                async for fragment in fragments:
                    await queue.put(fragment)
        except Exception as exc:  # noqa: BLE001
            await queue.put(_ProducerFailure(exc))
            return
        await queue.put(_STREAM_END)

    async def _finalize(self, chat: ChatSession, question: str, answer: str) -> None:
        """Persist a finished exchange; failures are logged, never raised."""

        chat_id = chat.chat_id
        try:
            await self._memory_window.append_all(
                chat_id, [ChatMessage.user(question), ChatMessage.assistant(answer)]
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to remember exchange for chat %s", chat_id)

        try:
            current = await self._chat_directory.update_preview(chat_id, chat.user_id, answer)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to update preview for chat %s", chat_id)
            return

        if (current.title or "").strip():
            return
        title = await self._summarizer.summarize(question, answer)
        if not title:
            return
        try:
            await self._chat_directory.rename(chat_id, chat.user_id, title)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to store generated title for chat %s", chat_id)


def _log_phase(chat_id: Optional[str], phase: AnswerPhase) -> None:
    logger.debug("Answer for chat %s -> %s", chat_id or "(new)", phase.value)


def get_answer_service(request: Request) -> AnswerService:
    """Dependency to access the answer service from app state."""

    return request.app.state.answer_service
