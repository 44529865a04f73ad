"""Service layer - indexing and query orchestration over a storage backend."""

from book_search_server.service_layer.indexing_service import IndexBuilder
from book_search_server.service_layer.search_service import QueryEngine


__all__ = ["IndexBuilder", "QueryEngine"]
