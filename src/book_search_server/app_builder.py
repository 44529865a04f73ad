"""Composable builder for the indexing and search HTTP service."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import anyio
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from book_search_server.adapters.book_source import BookSource, DatalakeBookSource
from book_search_server.config import Settings
from book_search_server.domain.errors import (
    BackendConnectionError,
    BookNotFoundError,
    BookSearchError,
    InvalidQueryError,
)
from book_search_server.domain.model import SearchFilters
from book_search_server.observability import (
    REQUEST_COUNT,
    configure_logging,
    configure_trace_exporter,
    get_metrics,
    get_metrics_content_type,
    init_tracing,
)
from book_search_server.observability.tracing import TraceContextMiddleware, trace_request
from book_search_server.runtime.health import build_health_endpoint
from book_search_server.search.storage import StorageBackend
from book_search_server.search.storage_factory import create_backend
from book_search_server.service_layer.indexing_service import IndexBuilder
from book_search_server.service_layer.search_service import QueryEngine


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppBuilder:
    """Builds the ASGI app from settings and (optionally) injected collaborators.

    Tests inject a backend and an in-memory book source; production lets the
    builder create both from :class:`Settings`. A backend created here is
    closed on shutdown; an injected one stays owned by the caller.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        backend: StorageBackend | None = None,
        book_source: BookSource | None = None,
        configure_observability: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self._injected_backend = backend
        self._injected_source = book_source
        self.configure_observability = configure_observability
        self.backend: StorageBackend | None = None
        self.index_builder: IndexBuilder | None = None
        self.query_engine: QueryEngine | None = None

    def build(self) -> Starlette:
        """Build and return the Starlette application."""
        settings = self.settings
        if self.configure_observability:
            configure_logging(level=settings.log_level, json_output=settings.log_json)
            init_tracing(service_name=settings.service_name)
            configure_trace_exporter(settings.otlp_endpoint)

        self.backend = self._injected_backend or create_backend(settings)
        book_source = self._injected_source or DatalakeBookSource(settings.datalake_dir)
        self.index_builder = IndexBuilder(self.backend, book_source)
        self.query_engine = QueryEngine(self.backend)

        app = Starlette(
            debug=settings.log_level == "debug",
            routes=self._build_routes(),
            lifespan=self._build_lifespan_manager(),
        )
        app.state.settings = settings
        app.state.backend = self.backend
        app.state.index_builder = self.index_builder
        app.state.query_engine = self.query_engine
        app.add_middleware(BaseHTTPMiddleware, dispatch=trace_request)
        app.add_middleware(TraceContextMiddleware)

        logger.info(
            "Book search server initialized (role=%s, backend=%s)",
            settings.service_role,
            self.backend.name,
        )
        return app

    def _build_routes(self) -> list[Route]:
        assert self.backend is not None
        routes = [
            Route("/status", endpoint=build_health_endpoint(self.settings, self.backend), methods=["GET"]),
            Route("/metrics", endpoint=self._build_metrics_endpoint(), methods=["GET"]),
        ]
        if self.settings.serves_indexing():
            routes.append(Route("/index/update/{book_id}", endpoint=self._build_index_book_endpoint(), methods=["POST"]))
            routes.append(Route("/index/rebuild", endpoint=self._build_rebuild_endpoint(), methods=["POST"]))
            routes.append(Route("/index/status", endpoint=self._build_index_status_endpoint(), methods=["GET"]))
        if self.settings.serves_search():
            routes.append(Route("/search", endpoint=self._build_search_endpoint(), methods=["GET"]))
        return routes

    def _build_metrics_endpoint(self):
        async def metrics_endpoint(_: Request) -> Response:
            return Response(content=get_metrics(), media_type=get_metrics_content_type())

        return metrics_endpoint

    def _build_index_book_endpoint(self):
        index_builder = self.index_builder
        assert index_builder is not None

        async def index_book_endpoint(request: Request) -> JSONResponse:
            raw_id = request.path_params.get("book_id", "")
            try:
                book_id = int(raw_id)
            except ValueError:
                return _error_response("index_book", 400, "Invalid book id", f"'{raw_id}' is not an integer")

            try:
                result = await self._run_blocking(index_builder.index_book, book_id)
            except BookNotFoundError as exc:
                # Missing books are reported as server errors to match the deployed API.
                logger.warning("Index request for unknown book %d: %s", book_id, exc)
                return _error_response("index_book", 500, "Book not found", str(exc))
            except (BackendConnectionError, TimeoutError) as exc:
                return _unavailable("index_book", exc)

            REQUEST_COUNT.labels(route="index_book", status="200").inc()
            return JSONResponse({"book_id": result.book_id, "status": result.status})

        return index_book_endpoint

    def _build_rebuild_endpoint(self):
        index_builder = self.index_builder
        assert index_builder is not None

        async def rebuild_endpoint(_: Request) -> JSONResponse:
            try:
                report = await self._run_blocking(
                    index_builder.rebuild_index,
                    timeout=self.settings.rebuild_timeout_seconds,
                )
            except (BackendConnectionError, TimeoutError) as exc:
                return _unavailable("rebuild", exc)
            except BookSearchError as exc:
                logger.error("Rebuild failed: %s", exc, exc_info=True)
                return _error_response("rebuild", 500, "Rebuild failed", str(exc))

            REQUEST_COUNT.labels(route="rebuild", status="200").inc()
            return JSONResponse(report.to_dict())

        return rebuild_endpoint

    def _build_index_status_endpoint(self):
        index_builder = self.index_builder
        assert index_builder is not None

        async def index_status_endpoint(_: Request) -> JSONResponse:
            try:
                stats = await self._run_blocking(index_builder.index_status)
            except (BackendConnectionError, TimeoutError) as exc:
                return _unavailable("index_status", exc)

            REQUEST_COUNT.labels(route="index_status", status="200").inc()
            return JSONResponse(stats.to_dict())

        return index_status_endpoint

    def _build_search_endpoint(self):
        query_engine = self.query_engine
        assert query_engine is not None

        async def search_endpoint(request: Request) -> JSONResponse:
            params = request.query_params
            query = params.get("q", "")

            year, error = _parse_int_param(params.get("year"), "year")
            if error:
                return error
            limit, error = _parse_int_param(params.get("limit"), "limit", min_value=0)
            if error:
                return error

            filters = SearchFilters(
                author=params.get("author") or None,
                language=params.get("language") or None,
                year=year,
            )
            try:
                response = await self._run_blocking(query_engine.search, query, filters, limit)
            except InvalidQueryError as exc:
                return _error_response("search", 400, "Invalid query", str(exc))
            except (BackendConnectionError, TimeoutError) as exc:
                return _unavailable("search", exc)

            REQUEST_COUNT.labels(route="search", status="200").inc()
            return JSONResponse(response.to_dict())

        return search_endpoint

    async def _run_blocking(self, func: Callable[..., T], *args: Any, timeout: float | None = None) -> T:
        """Run blocking service work in a worker thread within the request time budget."""
        budget = timeout if timeout is not None else self.settings.request_timeout_seconds
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=budget)

    def _build_lifespan_manager(self):
        backend = self.backend
        assert backend is not None
        owns_backend = self._injected_backend is None

        @asynccontextmanager
        async def lifespan(app: Starlette):
            try:
                await anyio.to_thread.run_sync(backend.test_connection)
            except BackendConnectionError as exc:
                logger.error("Storage backend %s is unreachable: %s", backend.name, exc)
                raise
            logger.info("Connected to %s backend", backend.name)

            try:
                yield
            finally:
                if owns_backend:
                    try:
                        await anyio.to_thread.run_sync(backend.close)
                    except BackendConnectionError as exc:
                        logger.error("Error closing %s backend: %s", backend.name, exc, exc_info=True)

        return lifespan


def _parse_int_param(
    raw_value: str | None,
    name: str,
    *,
    min_value: int | None = None,
) -> tuple[int | None, JSONResponse | None]:
    if raw_value is None or raw_value == "":
        return None, None
    try:
        parsed = int(raw_value)
    except ValueError:
        return None, _error_response("search", 400, f"Invalid {name}", f"'{raw_value}' is not an integer")
    if min_value is not None and parsed < min_value:
        return None, _error_response("search", 400, f"Invalid {name}", f"{name} must be >= {min_value}")
    return parsed, None


def _error_response(route: str, status_code: int, error: str, detail: str) -> JSONResponse:
    REQUEST_COUNT.labels(route=route, status=str(status_code)).inc()
    return JSONResponse({"error": error, "detail": detail}, status_code=status_code)


def _unavailable(route: str, exc: Exception) -> JSONResponse:
    if isinstance(exc, TimeoutError):
        logger.error("%s timed out", route)
        return _error_response(route, 503, "Request timed out", "backend did not respond in time")
    logger.error("%s failed: backend unavailable: %s", route, exc, exc_info=True)
    return _error_response(route, 503, "Backend unavailable", str(exc))
