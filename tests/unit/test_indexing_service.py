"""IndexBuilder: per-book indexing, rebuilds and status."""

from prometheus_client import REGISTRY
import pytest

from book_search_server.adapters.book_source import InMemoryBookSource
from book_search_server.domain.errors import BackendConnectionError, BookNotFoundError
from book_search_server.domain.model import BookMetadata, RebuildState
from book_search_server.search.storage import KeyValueBackend
from book_search_server.search.tokenizer import tokenize
from book_search_server.service_layer.indexing_service import IndexBuilder
from tests.fixtures.sample_books import PRIDE_BODY, SAMPLE_BOOKS


def _snapshot(backend, book_id, words):
    return backend.get_book_metadata(book_id), {word: backend.get_books_for_word(word) for word in sorted(words)}


class FlakyWriteBackend(KeyValueBackend):
    """Key-value backend whose word writes fail for a single book."""

    def __init__(self, failing_id: int) -> None:
        super().__init__()
        self.failing_id = failing_id

    def add_words_to_index(self, words, book_id):
        if book_id == self.failing_id:
            raise BackendConnectionError("transient failure")
        return super().add_words_to_index(words, book_id)


class UnreadableBookSource(InMemoryBookSource):
    def __init__(self, books, failing_id: int) -> None:
        super().__init__(books)
        self.failing_id = failing_id

    def locate(self, book_id):
        if book_id == self.failing_id:
            raise PermissionError(f"cannot read book {book_id}")
        return super().locate(book_id)


class BrokenCatalogSource(InMemoryBookSource):
    def list_known_ids(self):
        raise PermissionError("datalake partition is unreadable")


class TestIndexBook:
    def test_returns_updated_result(self, backend, book_source):
        result = IndexBuilder(backend, book_source).index_book(1342)

        assert result.book_id == 1342
        assert result.status == "updated"
        assert result.words_indexed > 0

    def test_stores_metadata_with_body_counts(self, backend, book_source):
        IndexBuilder(backend, book_source).index_book(1342)

        metadata = backend.get_book_metadata(1342)
        assert metadata.title == "Pride and Prejudice"
        assert metadata.author == "Jane Austen"
        assert metadata.language == "en"
        assert metadata.year == 1998
        assert metadata.word_count == len(PRIDE_BODY.split())
        assert metadata.unique_words == len(tokenize(PRIDE_BODY))

    def test_title_words_indexed_but_not_counted(self, backend, book_source):
        IndexBuilder(backend, book_source).index_book(1342)

        assert "prejudice" not in tokenize(PRIDE_BODY)
        assert 1342 in backend.get_books_for_word("prejudice")
        assert backend.get_book_metadata(1342).unique_words == len(tokenize(PRIDE_BODY))

    def test_vocabulary_round_trip(self, backend, book_source):
        IndexBuilder(backend, book_source).index_book(11)

        header, body = SAMPLE_BOOKS[11]
        title = backend.get_book_metadata(11).title
        for word in tokenize(body) | tokenize(title):
            assert 11 in backend.get_books_for_word(word), word

    def test_reindexing_is_idempotent(self, backend, book_source):
        builder = IndexBuilder(backend, book_source)
        header, body = SAMPLE_BOOKS[84]
        vocabulary = tokenize(body) | tokenize("Frankenstein; Or, The Modern Prometheus")

        builder.index_book(84)
        once = _snapshot(backend, 84, vocabulary)
        builder.index_book(84)
        twice = _snapshot(backend, 84, vocabulary)

        assert once == twice
        assert backend.list_book_ids() == [84]

    def test_unknown_book_raises_and_stores_nothing(self, backend, book_source):
        with pytest.raises(BookNotFoundError):
            IndexBuilder(backend, book_source).index_book(424242)

        assert backend.list_book_ids() == []

    def test_book_with_empty_header_gets_defaults(self, backend):
        source = InMemoryBookSource({5: ("", "some plain body text")})
        IndexBuilder(backend, source).index_book(5)

        metadata = backend.get_book_metadata(5)
        assert metadata == BookMetadata(book_id=5, word_count=4, unique_words=4)
        assert backend.get_books_for_word("plain") == {5}

    def test_records_metrics(self, kv_backend, book_source):
        labels = {"operation": "index_book", "status": "ok"}
        before = REGISTRY.get_sample_value("index_operations_total", labels) or 0.0

        IndexBuilder(kv_backend, book_source).index_book(11)

        assert REGISTRY.get_sample_value("index_operations_total", labels) == before + 1

    def test_records_failures(self, kv_backend, book_source):
        labels = {"operation": "index_book", "status": "error"}
        before = REGISTRY.get_sample_value("index_operations_total", labels) or 0.0

        with pytest.raises(BookNotFoundError):
            IndexBuilder(kv_backend, book_source).index_book(1)

        assert REGISTRY.get_sample_value("index_operations_total", labels) == before + 1


class TestRebuildIndex:
    def test_state_starts_idle(self, kv_backend, book_source):
        builder = IndexBuilder(kv_backend, book_source)
        assert builder.rebuild_state is RebuildState.IDLE
        assert builder.last_report is None

    def test_rebuild_indexes_every_known_book(self, backend, book_source):
        builder = IndexBuilder(backend, book_source)

        report = builder.rebuild_index()

        assert report.status == "rebuilt"
        assert report.books_processed == len(SAMPLE_BOOKS)
        assert report.books_failed == 0
        assert backend.list_book_ids() == sorted(SAMPLE_BOOKS)
        assert builder.rebuild_state is RebuildState.COMPLETED
        assert builder.last_report == report

    def test_one_unresolvable_book_does_not_fail_the_run(self, backend, book_source):
        book_source.announce(500)
        builder = IndexBuilder(backend, book_source)

        report = builder.rebuild_index()

        total = len(book_source.list_known_ids())
        assert report.status == "rebuilt"
        assert report.books_processed == total - 1
        assert report.books_failed == 1
        assert report.failed_ids == [500]
        assert builder.rebuild_state is RebuildState.COMPLETED

    def test_rebuild_clears_stale_entries(self, backend, book_source):
        backend.store_book_metadata(BookMetadata(book_id=7777, title="Stale"))
        backend.add_word_to_index("stale", 7777)

        IndexBuilder(backend, book_source).rebuild_index()

        assert 7777 not in backend.list_book_ids()
        assert backend.get_books_for_word("stale") == set()

    def test_rebuild_of_empty_catalog(self, backend):
        report = IndexBuilder(backend, InMemoryBookSource()).rebuild_index()

        assert report.books_processed == 0
        assert report.to_dict()["indexed_count"] == 0

    def test_backend_failure_on_one_book_does_not_fail_the_run(self, book_source):
        backend = FlakyWriteBackend(failing_id=84)
        builder = IndexBuilder(backend, book_source)

        report = builder.rebuild_index()

        assert report.books_processed == len(SAMPLE_BOOKS) - 1
        assert report.books_failed == 1
        assert report.failed_ids == [84]
        assert builder.rebuild_state is RebuildState.COMPLETED
        assert 1342 in backend.get_books_for_word("pride")

    def test_unexpected_error_on_one_book_is_counted(self, kv_backend):
        source = UnreadableBookSource(SAMPLE_BOOKS, failing_id=84)
        builder = IndexBuilder(kv_backend, source)

        report = builder.rebuild_index()

        assert report.books_processed == len(SAMPLE_BOOKS) - 1
        assert report.failed_ids == [84]
        assert builder.rebuild_state is RebuildState.COMPLETED

    def test_clear_failure_propagates_and_resets_state(self, book_source):
        backend = KeyValueBackend()
        backend.close()
        builder = IndexBuilder(backend, book_source)

        with pytest.raises(BackendConnectionError):
            builder.rebuild_index()

        assert builder.rebuild_state is RebuildState.IDLE

    def test_catalog_failure_never_leaves_state_running(self, kv_backend):
        builder = IndexBuilder(kv_backend, BrokenCatalogSource())

        with pytest.raises(PermissionError):
            builder.rebuild_index()

        assert builder.rebuild_state is RebuildState.IDLE
        assert builder.last_report is None


class TestIndexStatus:
    def test_never_updated(self, backend, book_source):
        stats = IndexBuilder(backend, book_source).index_status()

        assert stats.books_indexed == 0
        assert stats.last_update == "never"

    def test_after_indexing(self, backend, book_source):
        builder = IndexBuilder(backend, book_source)
        builder.index_book(1342)
        builder.index_book(11)

        stats = builder.index_status()

        assert stats.books_indexed == 2
        assert stats.distinct_words > 0
        assert stats.last_update != "never"
        assert stats.last_update == builder.last_update.isoformat()
        assert REGISTRY.get_sample_value("books_indexed") == 2
