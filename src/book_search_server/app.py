"""Main ASGI application entry point.

One process serves the indexing routes, the search routes, or both,
depending on ``SERVICE_ROLE``:

    Starlette App
      ├── POST /index/update/{book_id}   (indexing)
      ├── POST /index/rebuild            (indexing)
      ├── GET  /index/status             (indexing)
      ├── GET  /search                   (search)
      ├── GET  /status
      └── GET  /metrics

Usage:
    python -m book_search_server.app

    # Search-only process on its own port, backed by SQLite
    SERVICE_ROLE=search PORT=7003 BACKEND_TYPE=sqlite python -m book_search_server.app
"""

from __future__ import annotations

import logging

from pydantic import ValidationError
from starlette.applications import Starlette

from book_search_server.app_builder import AppBuilder
from book_search_server.config import Settings


logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> Starlette:
    """Create the ASGI application from environment-driven settings."""
    return AppBuilder(settings).build()


def main() -> None:
    """Run the HTTP server with uvicorn."""
    import uvicorn

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.error("Configuration is invalid: %s", exc)
        raise SystemExit(1) from exc

    app = create_app(settings)

    logger.info("Starting %s (%s) on %s:%d", settings.service_name, settings.service_role, settings.host, settings.port)
    logger.info("Status check: http://%s:%d/status", settings.host, settings.port)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        log_config=None,  # Don't let uvicorn override our logging config
    )


if __name__ == "__main__":
    main()
