"""Storage backend contract and the set-backed key-value implementation.

Every backend exposes the same idempotent upsert/lookup semantics:

* book metadata is upserted by ``book_id`` (last write wins),
* word membership is a set per word; adding an existing id is a no-op,
* ``clear_index`` wipes both and is only used by rebuilds.

Callers (the index builder and query engine) receive an injected backend
instance and must not rely on anything beyond this contract.

The key-value backend keeps ``book:{id}`` records and ``word:{word}`` sets in
process memory and can persist them to a minified JSON snapshot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
import logging
from pathlib import Path
import threading
from typing import Any

import orjson

from book_search_server.domain.errors import BackendConnectionError, BookNotFoundError
from book_search_server.domain.model import BookMetadata, IndexStats


logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024
_ID_BYTES = 8


class StorageBackend(ABC):
    """Polymorphic persistence for book metadata and the inverted index."""

    name: str = "abstract"

    @abstractmethod
    def test_connection(self) -> None:
        """Raise :class:`BackendConnectionError` if the backend is unreachable."""
        raise NotImplementedError

    @abstractmethod
    def store_book_metadata(self, metadata: BookMetadata) -> None:
        raise NotImplementedError

    @abstractmethod
    def add_word_to_index(self, word: str, book_id: int) -> None:
        raise NotImplementedError

    def add_words_to_index(self, words: Iterable[str], book_id: int) -> int:
        """Add ``book_id`` to every word's set; returns how many words were given."""
        count = 0
        for word in words:
            self.add_word_to_index(word, book_id)
            count += 1
        return count

    @abstractmethod
    def get_books_for_word(self, word: str) -> set[int]:
        raise NotImplementedError

    @abstractmethod
    def get_book_metadata(self, book_id: int) -> BookMetadata:
        """Return stored metadata or raise :class:`BookNotFoundError`."""
        raise NotImplementedError

    @abstractmethod
    def list_book_ids(self) -> list[int]:
        raise NotImplementedError

    @abstractmethod
    def clear_index(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> IndexStats:
        raise NotImplementedError

    def close(self) -> None:
        """Release pooled resources. Safe to call more than once."""
        return


class KeyValueBackend(StorageBackend):
    """Set-backed key-value store.

    Critical sections only cover single dictionary/set operations, so
    readers and writers interleave freely; a search running during a rebuild
    can observe a partially cleared index.
    """

    name = "kv"

    def __init__(self, snapshot_path: Path | str | None = None) -> None:
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._books: dict[int, dict[str, Any]] = {}
        self._words: dict[str, set[int]] = {}
        self._lock = threading.Lock()
        self._closed = False
        if self.snapshot_path is not None and self.snapshot_path.exists():
            self._load_snapshot(self.snapshot_path)

    def test_connection(self) -> None:
        if self._closed:
            raise BackendConnectionError("Key-value backend is closed")
        if self.snapshot_path is not None:
            parent = self.snapshot_path.parent
            if parent.exists() and not parent.is_dir():
                raise BackendConnectionError(f"Snapshot directory {parent} is not a directory")

    def store_book_metadata(self, metadata: BookMetadata) -> None:
        self._ensure_open()
        record = metadata.to_dict()
        with self._lock:
            self._books[metadata.book_id] = record

    def add_word_to_index(self, word: str, book_id: int) -> None:
        self._ensure_open()
        with self._lock:
            members = self._words.get(word)
            if members is None:
                self._words[word] = {book_id}
            else:
                members.add(book_id)

    def get_books_for_word(self, word: str) -> set[int]:
        self._ensure_open()
        with self._lock:
            return set(self._words.get(word, ()))

    def get_book_metadata(self, book_id: int) -> BookMetadata:
        self._ensure_open()
        with self._lock:
            record = self._books.get(book_id)
        if record is None:
            raise BookNotFoundError(book_id, "no metadata indexed")
        return BookMetadata.from_dict(record)

    def list_book_ids(self) -> list[int]:
        self._ensure_open()
        with self._lock:
            return sorted(self._books)

    def clear_index(self) -> None:
        self._ensure_open()
        with self._lock:
            self._books = {}
            self._words = {}
        logger.info("Cleared key-value index")

    def stats(self) -> IndexStats:
        self._ensure_open()
        with self._lock:
            books = list(self._books.values())
            word_sizes = [(len(word), len(ids)) for word, ids in self._words.items()]
        size_bytes = sum(len(orjson.dumps(record)) for record in books)
        size_bytes += sum(word_len + ids * _ID_BYTES for word_len, ids in word_sizes)
        return IndexStats(
            books_indexed=len(books),
            distinct_words=len(word_sizes),
            index_size_mb=size_bytes / _BYTES_PER_MB,
        )

    def flush(self) -> Path | None:
        """Write the current contents to the snapshot file, if configured."""
        if self.snapshot_path is None:
            return None
        with self._lock:
            payload = {
                "books": {str(book_id): record for book_id, record in self._books.items()},
                "words": {word: sorted(ids) for word, ids in self._words.items()},
            }
        self._atomic_write(self.snapshot_path, orjson.dumps(payload))
        logger.info("Wrote key-value snapshot to %s", self.snapshot_path)
        return self.snapshot_path

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise BackendConnectionError("Key-value backend is closed")

    def _load_snapshot(self, path: Path) -> None:
        try:
            payload = orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            raise BackendConnectionError(f"Unable to load snapshot {path}: {exc}") from exc
        self._books = {int(book_id): dict(record) for book_id, record in payload.get("books", {}).items()}
        self._words = {word: {int(book_id) for book_id in ids} for word, ids in payload.get("words", {}).items()}
        logger.info(
            "Loaded key-value snapshot %s (%d books, %d words)",
            path,
            len(self._books),
            len(self._words),
        )

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            raise BackendConnectionError(f"Unable to write snapshot {path}: {exc}") from exc
