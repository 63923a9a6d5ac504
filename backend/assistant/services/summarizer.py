from __future__ import annotations

import asyncio
import logging
from typing import Optional

from assistant.core.security import abbreviate
from assistant.services.provider_service import ProviderService

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "Produce exactly one output: a single title in Title Case, up to 5 words, "
    "no punctuation, no additional sentences. Do not add explanations, descriptions, "
    "or commentary. Respond with title only."
)


class Summarizer:
    """Derive a short chat title from one question/answer exchange."""

    def __init__(
        self,
        provider_service: ProviderService,
        title_max_chars: int = 60,
        timeout_sec: float = 30.0,
    ) -> None:
        self._provider_service = provider_service
        self._title_max_chars = max(1, title_max_chars)
        self._timeout_sec = timeout_sec

    async def summarize(self, question: str, answer: str) -> Optional[str]:
        """Return a title, or None when the model fails or answers blank."""

        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": "User:\n%s\n\nAssistant:\n%s" % (question, answer)},
        ]
        try:
            adapter, cfg = self._provider_service.get_summary_config()
            result = await asyncio.wait_for(
                adapter.generate(cfg, messages), timeout=self._timeout_sec
            )
        except asyncio.TimeoutError:
            logger.warning("Title generation timed out after %.1fs", self._timeout_sec)
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Title generation failed")
            return None

        title = " ".join((result.content or "").strip().strip("\"'").split())
        if not title:
            return None
        return abbreviate(title, self._title_max_chars)
