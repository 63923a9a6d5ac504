from __future__ import annotations

import re

SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9_-]{6,})")


def redact_secrets(text: str) -> str:
    """Redact API keys or similar secrets from a string."""

    return SECRET_PATTERN.sub("sk-***", text)


def sanitize_text(text: str, max_length: int) -> str:
    """Trim and clamp user-provided text to a safe length."""

    cleaned = text.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def abbreviate(text: str, max_length: int, marker: str = "...") -> str:
    """Cut text longer than max_length and append the marker.

    A cut result is always exactly max_length characters long; a limit
    smaller than the marker yields a bare prefix of the marker.
    """

    if len(text) <= max_length:
        return text
    keep = max(0, max_length - len(marker))
    if keep == 0:
        return marker[: max(0, max_length)]
    return text[:keep] + marker
