"""
main.py: server launcher for the hostel reservation engine.

    python main.py

Host, port and hot reload come from API_HOST, API_PORT and API_RELOAD.
Interactive API docs are served under /docs.

The application itself lives in app.py; this module only starts uvicorn.
Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import uvicorn

from backend.utils.config import get_settings
from backend.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def main() -> None:
    """Start the reservation engine API server."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting %s %s | url=http://%s:%s | docs=/docs | reload=%s",
        settings.app_name,
        settings.app_version,
        settings.api_host,
        settings.api_port,
        settings.api_reload,
    )

    # Blocks until CTRL+C. log_config=None keeps the engine's handlers.
    uvicorn.run(
        "app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_config=None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
