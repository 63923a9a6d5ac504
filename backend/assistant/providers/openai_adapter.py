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
    require_api_key,
    run_tool_call,
    to_function_tools,
)

logger = logging.getLogger(__name__)


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible chat completion APIs."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        url = self._join_url(cfg.base_url, "/v1/chat/completions")
        payload = {"model": cfg.model_name, "messages": messages}
        data = await self._request_json(
            "POST", url, headers=self._auth_headers(cfg.api_key), json=payload
        )
        choices = data.get("choices", [])
        if not choices:
            raise ProviderError("PROVIDER_PARSE_ERROR", "No choices returned by provider.")
        content = choices[0].get("message", {}).get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_usage_int(data, "prompt_tokens"),
            token_out=self._get_usage_int(data, "completion_tokens"),
        )

    async def stream(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        tools: Optional[list[dict[str, Any]]] = None,
        call_tool: Optional[ToolInvoker] = None,
    ) -> AsyncIterator[str]:
        url = self._join_url(cfg.base_url, "/v1/chat/completions")
        headers = self._auth_headers(cfg.api_key)
        function_tools = to_function_tools(tools) if tools and call_tool else []
        conversation = list(messages)

        for round_index in range(cfg.max_tool_rounds + 1):
            payload: dict[str, Any] = {
                "model": cfg.model_name,
                "messages": conversation,
                "stream": True,
            }
            # The last round withholds tools so the model has to answer in text.
            if function_tools and round_index < cfg.max_tool_rounds:
                payload["tools"] = function_tools

            text_parts: list[str] = []
            # index -> {"id", "name", "arguments_parts"}
            pending_calls: dict[int, dict[str, Any]] = {}
            async for line in self._stream_lines("POST", url, headers=headers, json=payload):
                chunk = self._parse_event(line)
                if chunk is None:
                    continue
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}
                content = delta.get("content")
                if isinstance(content, str) and content:
                    text_parts.append(content)
                    yield content
                for call_delta in delta.get("tool_calls") or []:
                    self._accumulate_tool_call(pending_calls, call_delta)

            if not pending_calls:
                return
            if call_tool is None:
                raise ProviderError("PROVIDER_TOOL_UNSUPPORTED", "Model requested a tool call.")

            calls = [pending_calls[index] for index in sorted(pending_calls)]
            logger.debug("OpenAI tool round %s: %s", round_index, [c["name"] for c in calls])
            conversation.append(
                {
                    "role": "assistant",
                    "content": "".join(text_parts) or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {
                                "name": call["name"],
                                "arguments": "".join(call["arguments_parts"]),
                            },
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                arguments = parse_tool_arguments("".join(call["arguments_parts"]))
                result = await run_tool_call(call_tool, call["name"], arguments)
                conversation.append(
                    {"role": "tool", "tool_call_id": call["id"], "content": result}
                )

        raise ProviderError("PROVIDER_TOOL_LOOP", "Tool call limit exceeded.")

    def _auth_headers(self, api_key: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_api_key(api_key, 'OpenAI')}"}

    @staticmethod
    def _parse_event(line: str) -> Optional[dict[str, Any]]:
        if not line.startswith("data:"):
            return None
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            return None
        try:
            payload = json.loads(data)
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.") from exc
        if not isinstance(payload, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.")
        error = payload.get("error")
        if error:
            detail = error.get("message") if isinstance(error, dict) else error
            raise ProviderError("PROVIDER_UPSTREAM", f"Provider stream failed: {detail}")
        return payload

    @staticmethod
    def _accumulate_tool_call(pending: dict[int, dict[str, Any]], call_delta: dict[str, Any]) -> None:
        index = int(call_delta.get("index", 0))
        entry = pending.setdefault(index, {"id": "", "name": "", "arguments_parts": []})
        if call_delta.get("id"):
            entry["id"] = call_delta["id"]
        function = call_delta.get("function") or {}
        if function.get("name"):
            entry["name"] = function["name"]
        if function.get("arguments"):
            entry["arguments_parts"].append(function["arguments"])

    @staticmethod
    def _join_url(base_url: Optional[str], path: str) -> str:
        if not base_url:
            raise ProviderError("PROVIDER_BASE_URL_MISSING", "Base URL is required for OpenAI.")
        base = base_url.rstrip("/")
        if base.endswith("/v1") and path.startswith("/v1/"):
            return base + path[3:]
        return base + path

    @staticmethod
    def _get_usage_int(data: dict[str, Any], key: str) -> Optional[int]:
        usage = data.get("usage") or {}
        value = usage.get(key)
        return int(value) if isinstance(value, int) else None
