from __future__ import annotations

import logging
from typing import Optional

from assistant.core.config import Settings, get_settings
from assistant.providers.base import LLMAdapter, MockAdapter, ProviderError, ProviderRuntimeConfig
from assistant.providers.ollama_adapter import OllamaAdapter
from assistant.providers.openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "ollama", "mock")


class ProviderService:
    """Resolve the adapter and runtime config for chat and title generation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, LLMAdapter]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        timeout = self._settings.generation_timeout_sec
        self._adapters = adapters or {
            "openai": OpenAIAdapter(timeout_sec=timeout),
            "ollama": OllamaAdapter(timeout_sec=timeout),
            "mock": MockAdapter(),
        }

    def set_adapters(self, adapters: dict[str, LLMAdapter]) -> None:
        """Override adapter registry (useful for tests)."""

        self._adapters = adapters

    def get_generation_config(self) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        """Return the adapter and runtime configuration for answering questions."""

        return self._resolve(self._settings.llm_model)

    def get_summary_config(self) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        """Return the adapter and runtime configuration for chat titles."""

        model_name = self._settings.summary_model.strip() or self._settings.llm_model
        return self._resolve(model_name)

    def _resolve(self, model_name: str) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        provider = self._normalize_provider(self._settings.llm_provider)
        adapter = self._adapters.get(provider)
        if not adapter:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        if not model_name.strip():
            raise ProviderError("PROVIDER_NOT_READY", "A model must be configured.")
        runtime_cfg = ProviderRuntimeConfig(
            provider=provider,
            model_name=model_name.strip(),
            base_url=self._settings.llm_base_url.strip() or self._default_base_url(provider),
            api_key=self._settings.llm_api_key.strip() or None,
            max_tool_rounds=max(0, self._settings.max_tool_rounds),
        )
        return adapter, runtime_cfg

    def _default_base_url(self, provider: str) -> Optional[str]:
        if provider == "openai":
            return self._settings.openai_base_url
        if provider == "ollama":
            return self._settings.ollama_base_url
        return None

    @staticmethod
    def _normalize_provider(provider: str) -> str:
        normalized = provider.strip().lower()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return normalized
