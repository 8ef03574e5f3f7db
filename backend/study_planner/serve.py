"""Console entry point that serves the planner API with uvicorn."""

from __future__ import annotations

import logging

from .config import get_settings
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    settings = get_settings()
    logger.info("Starting study planner API on %s:%s", settings.host, settings.port)

    import uvicorn

    uvicorn.run(
        "study_planner.main:app",
        host=settings.host,
        port=settings.port,
        log_level="info",
        timeout_graceful_shutdown=30,
    )


if __name__ == "__main__":
    main()


__all__ = ["main"]
