"""Query engine over the inverted index.

Candidate retrieval is OR across query tokens. Filters then narrow the pool
with AND semantics, and ranking counts how many query tokens appear as
substrings of the candidate's ``"{title} {author}"``. Candidates that only
matched through body text keep a score of 0 and are still returned.
"""

from __future__ import annotations

import logging

from book_search_server.domain.errors import BookNotFoundError, InvalidQueryError
from book_search_server.domain.model import BookMetadata, SearchFilters, SearchResponse, SearchResult
from book_search_server.observability.metrics import SEARCH_LATENCY, SEARCH_RESULTS, track_latency
from book_search_server.observability.tracing import create_span
from book_search_server.search.storage import StorageBackend
from book_search_server.search.tokenizer import tokenize


logger = logging.getLogger(__name__)


class QueryEngine:
    """Evaluates keyword queries with metadata filters."""

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
    ) -> SearchResponse:
        """Run a search.

        Args:
            query: Free text; trimmed before use.
            filters: Optional author/language/year constraints.
            limit: Maximum results to return; ``None`` returns all.

        Raises:
            InvalidQueryError: the trimmed query is empty or ``limit`` is negative
            BackendConnectionError: the storage backend failed
        """
        filters = filters or SearchFilters()
        trimmed = query.strip() if query else ""
        if not trimmed:
            raise InvalidQueryError("Query parameter 'q' is required")
        if limit is not None and limit < 0:
            raise InvalidQueryError("limit must be zero or greater")

        with create_span("search.query", attributes={"search.query": trimmed}) as span, track_latency(SEARCH_LATENCY):
            results = self._execute(trimmed, filters)
            if limit is not None:
                results = results[:limit]
            span.set_attribute("search.results", len(results))

        SEARCH_RESULTS.observe(len(results))
        logger.debug("Query %r returned %d results", trimmed, len(results))
        return SearchResponse(
            query=trimmed,
            filters=filters.to_dict(),
            count=len(results),
            results=results,
        )

    def _execute(self, query: str, filters: SearchFilters) -> list[SearchResult]:
        tokens = tokenize(query)
        if not tokens:
            return []

        candidates: set[int] = set()
        for token in tokens:
            candidates |= self.backend.get_books_for_word(token)

        results: list[SearchResult] = []
        ordered_tokens = sorted(tokens)
        for book_id in candidates:
            try:
                metadata = self.backend.get_book_metadata(book_id)
            except BookNotFoundError:
                # Metadata can disappear under a concurrent rebuild.
                logger.debug("Skipping book %d: metadata not found", book_id)
                continue
            if not filters.matches(metadata):
                continue
            results.append(self._score(metadata, ordered_tokens))

        results.sort(key=lambda result: (-result.score, result.book_id))
        return results

    @staticmethod
    def _score(metadata: BookMetadata, tokens: list[str]) -> SearchResult:
        haystack = f"{metadata.title} {metadata.author}".lower()
        matched = [token for token in tokens if token in haystack]
        return SearchResult(
            book_id=metadata.book_id,
            title=metadata.title,
            author=metadata.author,
            language=metadata.language,
            year=metadata.year,
            score=len(matched),
            matches=matched,
        )
