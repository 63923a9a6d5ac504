from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ASSISTANT_SYSTEM_PROMPT = (
    "You are an AI powered assistant to help people adopt a dog from the adoption "
    "agency named Pooch Palace with locations in Madison, Seoul, Tokyo, Singapore, Paris, "
    "Mumbai, New Delhi, Barcelona, San Francisco, and London. Information about the dogs "
    "available will be presented below. If there is no information, then return a polite "
    "response suggesting we don't have any dogs available."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5500,http://localhost:5500",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./assistant.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    llm_provider: str = Field(default="ollama", alias="LLM_PROVIDER")
    llm_base_url: str = Field(default="", alias="LLM_BASE_URL")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_model: str = Field(default="llama3.1", alias="LLM_MODEL")
    summary_model: str = Field(default="", alias="SUMMARY_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    ollama_base_url: str = Field(
        default="http://localhost:11434", alias="OLLAMA_BASE_URL"
    )
    generation_timeout_sec: float = Field(default=120.0, alias="GENERATION_TIMEOUT_SEC")
    summary_timeout_sec: float = Field(default=30.0, alias="SUMMARY_TIMEOUT_SEC")
    max_tool_rounds: int = Field(default=5, alias="MAX_TOOL_ROUNDS")
    assistant_system_prompt: str = Field(
        default=DEFAULT_ASSISTANT_SYSTEM_PROMPT, alias="ASSISTANT_SYSTEM_PROMPT"
    )

    memory_window_size: int = Field(default=20, alias="MEMORY_WINDOW_SIZE")
    last_message_max_chars: int = Field(default=60, alias="LAST_MESSAGE_MAX_CHARS")
    title_max_chars: int = Field(default=60, alias="TITLE_MAX_CHARS")
    max_question_chars: int = Field(default=8000, alias="MAX_QUESTION_CHARS")

    retrieval_top_k: int = Field(default=4, alias="RETRIEVAL_TOP_K")
    retrieval_max_chars: int = Field(default=4000, alias="RETRIEVAL_MAX_CHARS")
    retrieval_candidate_limit: int = Field(default=5000, alias="RETRIEVAL_CANDIDATE_LIMIT")
    embed_provider: str = Field(default="deterministic", alias="EMBED_PROVIDER")
    embed_model: str = Field(default="deterministic-v1", alias="EMBED_MODEL")
    embed_dim: int = Field(default=64, alias="EMBED_DIM")
    embed_openai_api_key: str = Field(default="", alias="EMBED_OPENAI_API_KEY")
    ingestion_workers: int = Field(default=1, alias="INGESTION_WORKERS")

    tools_enabled: bool = Field(default=True, alias="TOOLS_ENABLED")
    adoption_lead_days: int = Field(default=3, alias="ADOPTION_LEAD_DAYS")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
