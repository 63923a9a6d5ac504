from __future__ import annotations

import logging

from assistant.core.security import redact_secrets


class RedactionFilter(logging.Filter):
    """Log filter that masks API keys before a record is written."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_secrets(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {key: _redact_arg(value) for key, value in record.args.items()}
            else:
                record.args = tuple(_redact_arg(arg) for arg in record.args)
        return True


def _redact_arg(value: object) -> object:
    # Numbers keep their type so %d / %.1f placeholders still format.
    if isinstance(value, (int, float)):
        return value
    return redact_secrets(str(value))


def setup_logging(level: str) -> None:
    """Configure application logging with secret redaction on every root handler."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
