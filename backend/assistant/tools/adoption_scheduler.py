from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from assistant.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class DogAdoptionSchedulerTool:
    """Books a pickup slot for a dog at a Pooch Palace location."""

    def __init__(self, lead_days: int = 3, clock: Optional[Callable[[], Any]] = None) -> None:
        self._lead = timedelta(days=lead_days)
        self._clock = clock or utc_now

    @property
    def name(self) -> str:
        return "schedule_dog_adoption"

    @property
    def description(self) -> str:
        return "Schedule an appointment to pick up or adopt a dog from a Pooch Palace location."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "dog_id": {
                    "type": "string",
                    "description": "The id of the dog",
                },
                "dog_name": {
                    "type": "string",
                    "description": "The name of the dog",
                },
            },
            "required": ["dog_id", "dog_name"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        pickup_at = (self._clock() + self._lead).isoformat()
        logger.debug(
            "Scheduling %s/%s for %s",
            tool_input.get("dog_name"),
            tool_input.get("dog_id"),
            pickup_at,
        )
        return pickup_at
