"""ASGI entry-point for the ticketgate scanning station."""
from __future__ import annotations

import logging

import uvicorn

from .api import create_app
from .config import Settings, get_settings
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = create_app(settings)


def run() -> None:
    logger.info("Serving ticketgate on %s:%d", settings.controller_host, settings.controller_port)
    uvicorn.run(
        app,
        host=settings.controller_host,
        port=settings.controller_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
