"""Run the LaneCache API with ``python -m lanecache``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Serve the recommendation API on the configured host and port."""

    settings = get_settings()
    if not settings.recommendation_api_url:
        logger.warning("RECOMMENDATION_API_URL is not set; the API will refuse to start")
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
        log_level="info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
