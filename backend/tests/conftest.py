import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
import pytest

from assistant.core.config import get_settings
from assistant.db.base import init_db
from assistant.main import create_app
from assistant.providers.base import LLMResult, ProviderRuntimeConfig


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests."""

    def __init__(self) -> None:
        self.chunks: list[str] = ["Buddy ", "is ", "available."]
        self.title = "Dog Adoption Chat"
        self.stream_error: Optional[Exception] = None
        self.generate_error: Optional[Exception] = None
        self.stall_after: Optional[int] = None
        self.stream_calls: list[list[dict]] = []
        self.tool_specs: list[Optional[list[dict[str, Any]]]] = []
        self.closed = False

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        if self.generate_error:
            raise self.generate_error
        return LLMResult(content=self.title, model_provider=cfg.provider, model_name=cfg.model_name)

    async def stream(self, cfg, messages, tools=None, call_tool=None):
        self.stream_calls.append(messages)
        self.tool_specs.append(tools)
        self.closed = False
        try:
            for index, chunk in enumerate(self.chunks):
                if self.stall_after is not None and index >= self.stall_after:
                    await asyncio.sleep(3600)
                yield chunk
            if self.stream_error:
                raise self.stream_error
        finally:
            self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def stub_adapter():
    return StubAdapter()


@pytest.fixture
def app_factory(tmp_path, monkeypatch, stub_adapter):
    def build(**env: str):
        db_path = tmp_path / "test_assistant.db"
        monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
        monkeypatch.setenv("LLM_PROVIDER", "ollama")
        monkeypatch.setenv("LLM_MODEL", "stub-model")
        monkeypatch.setenv("EMBED_PROVIDER", "deterministic")
        monkeypatch.setenv("EMBED_MODEL", "deterministic-v1")
        monkeypatch.setenv("EMBED_DIM", "256")
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()
        app = create_app()
        app.state.provider_service.set_adapters(
            {"openai": stub_adapter, "ollama": stub_adapter}
        )
        return app

    yield build
    get_settings.cache_clear()


@pytest.fixture
def app(app_factory):
    return app_factory()


@pytest.fixture
def client_for():
    @asynccontextmanager
    async def open_client(app, user_id: str = "alice"):
        await init_db(app.state.engine)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://test",
            headers={"X-User-Id": user_id},
        ) as client:
            yield client
        await app.state.ingestion_service.shutdown()
        await app.state.engine.dispose()

    return open_client


@pytest.fixture
async def client(app, client_for):
    async with client_for(app) as client:
        yield client
