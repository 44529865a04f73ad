"""Index builder: per-book and full-corpus indexing orchestration.

``index_book`` resolves a book through the ingestion collaborator, extracts
metadata, tokenizes body and title independently and writes everything to
the storage backend. Writes are idempotent upserts, so re-indexing the same
book (or indexing it from two requests at once) converges to the same state.
A crash between the metadata write and the word writes leaves the book
partially indexed until it is re-indexed or the index is rebuilt.

``rebuild_index`` clears the backend and re-indexes every book in the
catalog. Per-book failures are counted in the report; they never abort the
run.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
import time

from book_search_server.adapters.book_source import BookSource
from book_search_server.domain.errors import BookSearchError
from book_search_server.domain.model import IndexResult, IndexStats, RebuildReport, RebuildState
from book_search_server.observability.metrics import BOOKS_INDEXED, INDEX_LATENCY, INDEX_OPERATIONS, track_latency
from book_search_server.observability.tracing import create_span
from book_search_server.search.metadata import extract_metadata
from book_search_server.search.storage import StorageBackend
from book_search_server.search.tokenizer import tokenize


logger = logging.getLogger(__name__)


class IndexBuilder:
    """Builds and maintains the inverted index for a storage backend."""

    def __init__(self, backend: StorageBackend, book_source: BookSource) -> None:
        self.backend = backend
        self.book_source = book_source
        self._state = RebuildState.IDLE
        self._state_lock = threading.Lock()
        self._last_update: datetime | None = None
        self._last_report: RebuildReport | None = None

    @property
    def rebuild_state(self) -> RebuildState:
        return self._state

    @property
    def last_report(self) -> RebuildReport | None:
        return self._last_report

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    def index_book(self, book_id: int) -> IndexResult:
        """Index a single book.

        Raises:
            BookNotFoundError: the ingestion collaborator has no text for the id
            BackendConnectionError: the storage backend failed
        """
        with create_span("index.book", attributes={"book.id": book_id}), track_latency(INDEX_LATENCY):
            try:
                result = self._index_book(book_id)
            except BookSearchError:
                INDEX_OPERATIONS.labels(operation="index_book", status="error").inc()
                raise
        INDEX_OPERATIONS.labels(operation="index_book", status="ok").inc()
        return result

    def _index_book(self, book_id: int) -> IndexResult:
        text = self.book_source.locate(book_id)

        metadata = extract_metadata(text.header, book_id)
        body_words = tokenize(text.body)
        title_words = tokenize(metadata.title)

        # unique_words counts body vocabulary only; title words are indexed but not counted.
        metadata = metadata.model_copy(
            update={
                "word_count": len(text.body.split()),
                "unique_words": len(body_words),
            }
        )

        self.backend.store_book_metadata(metadata)
        words_indexed = self.backend.add_words_to_index(body_words | title_words, book_id)
        self._touch()

        logger.info(
            "Indexed book %d (%d words, %d unique, %d index entries)",
            book_id,
            metadata.word_count,
            metadata.unique_words,
            words_indexed,
        )
        return IndexResult(book_id=book_id, status="updated", words_indexed=words_indexed)

    def rebuild_index(self) -> RebuildReport:
        """Clear the index and re-index every book in the catalog.

        Per-book failures of any kind are counted in the report and never
        abort the loop. Only a failure to clear the backend or to list the
        catalog propagates; the state then returns to ``idle``.
        """
        with self._state_lock:
            self._state = RebuildState.RUNNING
        started = time.perf_counter()
        processed = 0
        failed_ids: list[int] = []
        completed = False

        try:
            with create_span("index.rebuild") as span:
                self.backend.clear_index()
                book_ids = self.book_source.list_known_ids()
                logger.info("Rebuilding index for %d books", len(book_ids))

                for book_id in book_ids:
                    try:
                        self.index_book(book_id)
                    except BookSearchError as exc:
                        failed_ids.append(book_id)
                        logger.warning("Failed to index book %d during rebuild: %s", book_id, exc)
                    except Exception as exc:
                        failed_ids.append(book_id)
                        logger.error("Unexpected error indexing book %d during rebuild: %s", book_id, exc, exc_info=True)
                    else:
                        processed += 1

                span.set_attribute("rebuild.books_processed", processed)
                span.set_attribute("rebuild.books_failed", len(failed_ids))

            report = RebuildReport(
                status="rebuilt",
                books_processed=processed,
                books_failed=len(failed_ids),
                failed_ids=failed_ids,
                elapsed_seconds=time.perf_counter() - started,
            )
            with self._state_lock:
                self._state = RebuildState.COMPLETED
                self._last_report = report
            completed = True
        finally:
            if not completed:
                INDEX_OPERATIONS.labels(operation="rebuild", status="error").inc()
                with self._state_lock:
                    self._state = RebuildState.IDLE

        INDEX_OPERATIONS.labels(operation="rebuild", status="ok").inc()
        logger.info(
            "Rebuild completed: %d processed, %d failed in %s",
            report.books_processed,
            report.books_failed,
            report.elapsed_time,
        )
        return report

    def index_status(self) -> IndexStats:
        """Backend counters plus the time of this process's last write."""
        stats = self.backend.stats()
        BOOKS_INDEXED.set(stats.books_indexed)
        last_update = self._last_update.isoformat() if self._last_update else "never"
        return stats.model_copy(update={"last_update": last_update})

    def _touch(self) -> None:
        self._last_update = datetime.now(timezone.utc)
