from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistant.api import assistant as assistant_api
from assistant.api import chats as chats_api
from assistant.api import embeddings as embeddings_api
from assistant.core.config import get_settings
from assistant.core.logging import setup_logging
from assistant.db.base import create_engine, create_sessionmaker, init_db
from assistant.services.answer_service import AnswerService
from assistant.services.chat_directory_service import ChatDirectoryService
from assistant.services.ingestion_service import IngestionService
from assistant.services.memory_window import MemoryWindow
from assistant.services.prompt_builder import PromptBuilder
from assistant.services.provider_service import ProviderService
from assistant.services.retrieval_service import create_retrieval_service
from assistant.services.summarizer import Summarizer
from assistant.tools.registry import build_registry

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        app.state.ingestion_service.start()
        logger.info("Assistant backend ready (provider=%s)", settings.llm_provider)
        yield
        await app.state.ingestion_service.shutdown()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.provider_service = ProviderService(settings)
    app.state.chat_directory_service = ChatDirectoryService(
        sessionmaker, last_message_max_chars=settings.last_message_max_chars
    )
    app.state.memory_window = MemoryWindow(sessionmaker, window_size=settings.memory_window_size)
    app.state.retrieval_service = create_retrieval_service(
        sessionmaker=sessionmaker, settings=settings
    )
    app.state.ingestion_service = IngestionService(
        app.state.retrieval_service, workers=settings.ingestion_workers
    )
    app.state.tool_registry = build_registry(settings)
    app.state.summarizer = Summarizer(
        app.state.provider_service,
        title_max_chars=settings.title_max_chars,
        timeout_sec=settings.summary_timeout_sec,
    )
    app.state.answer_service = AnswerService(
        chat_directory=app.state.chat_directory_service,
        memory_window=app.state.memory_window,
        retrieval=app.state.retrieval_service,
        provider_service=app.state.provider_service,
        tool_registry=app.state.tool_registry,
        prompt_builder=PromptBuilder(
            settings.assistant_system_prompt,
            retrieval_max_chars=settings.retrieval_max_chars,
        ),
        summarizer=app.state.summarizer,
        generation_timeout_sec=settings.generation_timeout_sec,
        retrieval_top_k=settings.retrieval_top_k,
        max_question_chars=settings.max_question_chars,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(assistant_api.router)
    app.include_router(chats_api.router)
    app.include_router(embeddings_api.router)

    return app


app = create_app()
