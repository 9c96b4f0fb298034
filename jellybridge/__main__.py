"""Module executed when running ``python -m jellybridge``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Start the uvicorn server using the configured settings."""

    if not (settings.jellyfin_server and settings.jellyfin_user):
        logger.warning(
            "JELLYFIN_SERVER and JELLYFIN_USER must be set for requests to succeed"
        )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
