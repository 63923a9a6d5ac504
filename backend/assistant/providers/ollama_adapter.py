from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Optional

from assistant.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    ToolInvoker,
    parse_tool_arguments,
    run_tool_call,
    to_function_tools,
)

logger = logging.getLogger(__name__)


class OllamaAdapter(HTTPProviderAdapter):
    """Adapter for the Ollama local chat API."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        url = self._join_url(cfg.base_url, "/api/chat")
        payload = {"model": cfg.model_name, "messages": messages, "stream": False}
        data = await self._request_json("POST", url, json=payload)
        message = data.get("message", {})
        content = message.get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(data, "prompt_eval_count"),
            token_out=self._get_int(data, "eval_count"),
        )

    async def stream(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        tools: Optional[list[dict[str, Any]]] = None,
        call_tool: Optional[ToolInvoker] = None,
    ) -> AsyncIterator[str]:
        url = self._join_url(cfg.base_url, "/api/chat")
        function_tools = to_function_tools(tools) if tools and call_tool else []
        conversation = list(messages)

        for round_index in range(cfg.max_tool_rounds + 1):
            payload: dict[str, Any] = {
                "model": cfg.model_name,
                "messages": conversation,
                "stream": True,
            }
            if function_tools and round_index < cfg.max_tool_rounds:
                payload["tools"] = function_tools

            text_parts: list[str] = []
            pending_calls: list[dict[str, Any]] = []
            async for line in self._stream_lines("POST", url, json=payload):
                chunk = self._parse_line(line)
                message = chunk.get("message") or {}
                content = message.get("content")
                if isinstance(content, str) and content:
                    text_parts.append(content)
                    yield content
                pending_calls.extend(message.get("tool_calls") or [])

            if not pending_calls:
                return
            if call_tool is None:
                raise ProviderError("PROVIDER_TOOL_UNSUPPORTED", "Model requested a tool call.")

            logger.debug("Ollama tool round %s: %d call(s)", round_index, len(pending_calls))
            conversation.append(
                {"role": "assistant", "content": "".join(text_parts), "tool_calls": pending_calls}
            )
            for call in pending_calls:
                function = call.get("function") or {}
                name = str(function.get("name") or "")
                result = await run_tool_call(
                    call_tool, name, parse_tool_arguments(function.get("arguments"))
                )
                conversation.append({"role": "tool", "tool_name": name, "content": result})

        raise ProviderError("PROVIDER_TOOL_LOOP", "Tool call limit exceeded.")

    @staticmethod
    def _parse_line(line: str) -> dict[str, Any]:
        try:
            chunk = json.loads(line)
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.") from exc
        if not isinstance(chunk, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.")
        if chunk.get("error"):
            raise ProviderError("PROVIDER_UPSTREAM", f"Provider stream failed: {chunk['error']}")
        return chunk

    @staticmethod
    def _join_url(base_url: Optional[str], path: str) -> str:
        if not base_url:
            raise ProviderError("PROVIDER_BASE_URL_MISSING", "Base URL is required for Ollama.")
        base = base_url.rstrip("/")
        if base.endswith("/api") and path.startswith("/api/"):
            return base + path[4:]
        return base + path

    @staticmethod
    def _get_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None
