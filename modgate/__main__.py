"""Run the gateway: python -m modgate"""

from __future__ import annotations

import uvicorn

from modgate.config.settings import settings
from modgate.core.gateway import app
from modgate.util.logger import logger


def main() -> None:
    logger.info(
        "starting %s host=%s port=%d target=%s full_context_moderate=%s min_chars=%d whitelist=%s",
        settings.app_name,
        settings.host,
        settings.port,
        settings.target_url,
        settings.full_context_moderate,
        settings.min_chars_moderate,
        settings.white_list_models,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
