from __future__ import annotations

import uvicorn

from assistant.core.config import get_settings


def main() -> None:
    """Run the assistant backend with uvicorn on APP_HOST:APP_PORT."""

    settings = get_settings()
    config = uvicorn.Config(
        "assistant.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run()


if __name__ == "__main__":
    main()
