"""Error taxonomy shared by the indexing and search services."""

from __future__ import annotations


class BookSearchError(Exception):
    """Base error for the book search domain."""


class BookNotFoundError(BookSearchError):
    """Raised when book text or metadata is unavailable for an id."""

    def __init__(self, book_id: int, reason: str | None = None) -> None:
        self.book_id = book_id
        self.reason = reason
        message = f"Book {book_id} not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidQueryError(BookSearchError):
    """Raised when a search query is empty after trimming."""


class BackendConnectionError(BookSearchError, ConnectionError):
    """Raised when the storage backend is unreachable or failing."""


class CatalogUnavailableError(BookSearchError):
    """Raised when the ingestion collaborator cannot enumerate its books."""
