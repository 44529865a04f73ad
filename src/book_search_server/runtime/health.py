"""Service status endpoint factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import JSONResponse


if TYPE_CHECKING:
    from starlette.requests import Request

    from book_search_server.config import Settings
    from book_search_server.search.storage import StorageBackend


def build_health_endpoint(settings: Settings, backend: StorageBackend):
    """Return a coroutine function reporting the service identity and backend."""

    async def health_check(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "service": settings.service_name,
                "status": "running",
                "backend": backend.name,
                "role": settings.service_role,
            }
        )

    return health_check
