from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from assistant.core.config import Settings
from assistant.tools.adoption_scheduler import DogAdoptionSchedulerTool
from assistant.tools.base import Tool, ToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[Settings], bool]
    build: Callable[[Settings], list[Tool]]


def _tools_enabled(settings: Settings) -> bool:
    return settings.tools_enabled


def _adoption_tools(settings: Settings) -> list[Tool]:
    return [DogAdoptionSchedulerTool(lead_days=settings.adoption_lead_days)]


_TOOL_GROUPS: tuple[ToolGroup, ...] = (ToolGroup(_tools_enabled, _adoption_tools),)


class ToolRegistry:
    """Fixed set of named tools the generation step may call back into."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in self._tools.values()
        ]

    async def invoke(self, name: str, args: dict[str, Any]) -> str:
        """Run one tool; any resolution or execution failure surfaces as ToolError."""

        tool = self._tools.get(name)
        if tool is None:
            raise ToolError(name, f'Unknown tool "{name}"')

        required = tool.input_schema.get("required") or []
        missing = [key for key in required if args.get(key) in (None, "")]
        if missing:
            raise ToolError(name, f"Missing required argument(s): {', '.join(missing)}")

        try:
            return await tool.execute(args)
        except ToolError:
            raise
        except Exception as exc:
            logger.exception("Tool %s raised", name)
            raise ToolError(name, str(exc) or exc.__class__.__name__) from exc


def build_registry(settings: Settings) -> ToolRegistry:
    tools: list[Tool] = []
    for group in _TOOL_GROUPS:
        if group.enabled(settings):
            tools.extend(group.build(settings))
    registry = ToolRegistry(tools)
    logger.info("Tool registry ready: %s", ", ".join(registry.names()) or "(none)")
    return registry
