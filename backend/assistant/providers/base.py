from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from assistant.tools.base import ToolError

logger = logging.getLogger(__name__)

ToolInvoker = Callable[[str, dict[str, Any]], Awaitable[str]]


@dataclass
class ProviderRuntimeConfig:
    """Runtime configuration needed by an LLM adapter."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None
    max_tool_rounds: int = 5


@dataclass
class LLMResult:
    """Result returned from a non-streaming generation call."""

    content: str
    model_provider: str
    model_name: str
    token_in: int | None = None
    token_out: int | None = None


class LLMAdapter(Protocol):
    """Adapter interface for LLM providers."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        """Generate one complete response."""

    def stream(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        tools: Optional[list[dict[str, Any]]] = None,
        call_tool: Optional[ToolInvoker] = None,
    ) -> AsyncIterator[str]:
        """Yield answer text fragments, running tool calls through ``call_tool``."""


class ProviderError(RuntimeError):
    """Raised when a provider operation fails."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


def build_status_error(response: httpx.Response) -> ProviderError:
    """Build a normalized provider error from an HTTP response."""

    status = response.status_code
    message = _extract_response_message(response)
    formatted = f"Provider returned {status}: {message}"
    if status in {408, 429}:
        code = "PROVIDER_TIMEOUT" if status == 408 else "PROVIDER_RATE_LIMIT"
        return ProviderError(code, formatted, retryable=True, status_code=status)
    if status >= 500:
        return ProviderError(
            "PROVIDER_UPSTREAM",
            formatted,
            retryable=True,
            status_code=status,
        )
    return ProviderError("PROVIDER_BAD_STATUS", formatted, status_code=status)


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    """Return an API key or raise a normalized configuration error."""

    if api_key:
        return api_key
    raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")


def to_function_tools(specs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert registry tool specs into the chat-completions ``tools`` shape."""

    return [
        {
            "type": "function",
            "function": {
                "name": spec["name"],
                "description": spec.get("description", ""),
                "parameters": spec.get("input_schema") or {"type": "object", "properties": {}},
            },
        }
        for spec in specs
    ]


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments that may arrive as a JSON string or an object."""

    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Failed to parse tool call arguments: %s", str(raw)[:200])
        return {}
    return value if isinstance(value, dict) else {}


async def run_tool_call(call_tool: ToolInvoker, name: str, arguments: dict[str, Any]) -> str:
    """Invoke one tool; failures become error text handed back to the model."""

    try:
        return await call_tool(name, arguments)
    except ToolError as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return f'Error executing tool "{name}": {exc}'


def _extract_response_message(response: httpx.Response) -> str:
    """Extract a concise error message from provider JSON/text payloads."""

    try:
        payload: Any = response.json()
    except ValueError:
        return (response.text or "Unknown error from provider.").strip()

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code")
            if isinstance(detail, str) and detail.strip():
                return detail.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return (response.text or "Unknown error from provider.").strip()


class HTTPProviderAdapter:
    """Shared HTTP behavior for provider adapters."""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self._request(method, url, headers=headers, json=json)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid JSON from provider.") from exc
        if not isinstance(payload, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON payload.")
        return payload

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            if self._client:
                response = await self._client.request(
                    method, url, headers=headers, json=json, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                "Provider connection failed.",
                retryable=True,
            ) from exc
        if response.status_code >= 400:
            raise build_status_error(response)
        return response

    async def _stream_lines(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        """Yield non-empty response lines; the upstream connection closes with the iterator."""

        try:
            async with AsyncExitStack() as stack:
                client = self._client
                if client is None:
                    client = await stack.enter_async_context(
                        httpx.AsyncClient(timeout=self._timeout)
                    )
                response = await stack.enter_async_context(
                    client.stream(method, url, headers=headers, json=json, timeout=self._timeout)
                )
                if response.status_code >= 400:
                    await response.aread()
                    raise build_status_error(response)
                async for line in response.aiter_lines():
                    if line.strip():
                        yield line
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                "Provider connection failed.",
                retryable=True,
            ) from exc


class MockAdapter:
    """Offline adapter that echoes the question back word by word."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        question = _last_user_content(messages).split("\n\nAssistant:", 1)[0]
        if question.startswith("User:\n"):
            question = question[len("User:\n") :]
        words = re.findall(r"\w+", question)[:5]
        content = " ".join(word.capitalize() for word in words) or "Mock Conversation"
        return LLMResult(content=content, model_provider=cfg.provider, model_name=cfg.model_name)

    async def stream(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        tools: Optional[list[dict[str, Any]]] = None,
        call_tool: Optional[ToolInvoker] = None,
    ) -> AsyncIterator[str]:
        answer = f"Mock answer from {cfg.model_name or 'mock'}: {_last_user_content(messages)}"
        for index, word in enumerate(answer.split(" ")):
            yield word if index == 0 else f" {word}"


def _last_user_content(messages: list[dict]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return str(message.get("content") or "")
    return ""
