"""Key-value backend snapshot persistence."""

import orjson
import pytest

from book_search_server.domain.errors import BackendConnectionError
from book_search_server.domain.model import BookMetadata
from book_search_server.search.storage import KeyValueBackend


class TestSnapshot:
    def test_flush_without_path_is_noop(self, kv_backend):
        assert kv_backend.flush() is None

    def test_close_writes_snapshot_that_reloads(self, tmp_path):
        path = tmp_path / "state" / "kv.json"
        backend = KeyValueBackend(path)
        backend.store_book_metadata(BookMetadata(book_id=11, title="Alice's Adventures in Wonderland", year=2008))
        backend.add_words_to_index({"alice", "wonderland"}, 11)
        backend.add_word_to_index("alice", 12)
        backend.close()

        payload = orjson.loads(path.read_bytes())
        assert payload["words"]["alice"] == [11, 12]
        assert payload["books"]["11"]["title"] == "Alice's Adventures in Wonderland"

        reloaded = KeyValueBackend(path)
        try:
            assert reloaded.get_book_metadata(11).year == 2008
            assert reloaded.get_books_for_word("alice") == {11, 12}
            assert reloaded.list_book_ids() == [11]
        finally:
            reloaded.close()

    def test_corrupt_snapshot_raises_connection_error(self, tmp_path):
        path = tmp_path / "kv.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(BackendConnectionError, match="Unable to load snapshot"):
            KeyValueBackend(path)

    def test_snapshot_parent_must_be_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        backend = KeyValueBackend(blocker / "kv.json")

        with pytest.raises(BackendConnectionError):
            backend.test_connection()
