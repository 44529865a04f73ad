"""Domain layer - value objects and errors for books, queries and index state.

No infrastructure dependencies live here; storage backends, the ingestion
collaborator and HTTP handlers all exchange these types.
"""

from book_search_server.domain.errors import (
    BackendConnectionError,
    BookNotFoundError,
    BookSearchError,
    CatalogUnavailableError,
    InvalidQueryError,
)
from book_search_server.domain.model import (
    BookMetadata,
    BookText,
    IndexResult,
    IndexStats,
    RebuildReport,
    RebuildState,
    SearchFilters,
    SearchResponse,
    SearchResult,
)


__all__ = [
    "BackendConnectionError",
    "BookMetadata",
    "BookNotFoundError",
    "BookSearchError",
    "BookText",
    "CatalogUnavailableError",
    "IndexResult",
    "IndexStats",
    "InvalidQueryError",
    "RebuildReport",
    "RebuildState",
    "SearchFilters",
    "SearchResponse",
    "SearchResult",
]
