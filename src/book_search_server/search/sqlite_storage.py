"""Relational storage backend on SQLite.

Schema:

* ``books`` - one row per book id, upserted with ``ON CONFLICT DO UPDATE``.
* ``word_index`` - ``(word, book_id)`` pairs in a clustered ``WITHOUT ROWID``
  table; ``INSERT OR IGNORE`` makes membership idempotent.

Connections are leased from a bounded pool. A caller waits at most
``acquire_timeout`` seconds for a free connection and each statement is
bounded by SQLite's busy timeout, so a slow database reduces throughput
instead of hanging request handlers.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
import logging
from pathlib import Path
import queue
import sqlite3
import threading
from uuid import uuid4

from book_search_server.domain.errors import BackendConnectionError, BookNotFoundError
from book_search_server.domain.model import BookMetadata, IndexStats
from book_search_server.search.sqlite_pragmas import apply_connection_pragmas
from book_search_server.search.storage import StorageBackend


logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"
_BYTES_PER_MB = 1024 * 1024

_BOOK_COLUMNS = ("book_id", "title", "author", "language", "year", "word_count", "unique_words")

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS books (
        book_id INTEGER PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        author TEXT NOT NULL DEFAULT '',
        language TEXT NOT NULL DEFAULT 'en',
        year INTEGER,
        word_count INTEGER NOT NULL DEFAULT 0,
        unique_words INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS word_index (
        word TEXT NOT NULL,
        book_id INTEGER NOT NULL,
        PRIMARY KEY (word, book_id)
    ) WITHOUT ROWID;
"""

_UPSERT_BOOK = """
    INSERT INTO books (book_id, title, author, language, year, word_count, unique_words)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(book_id) DO UPDATE SET
        title = excluded.title,
        author = excluded.author,
        language = excluded.language,
        year = excluded.year,
        word_count = excluded.word_count,
        unique_words = excluded.unique_words
"""

_INSERT_WORD = "INSERT OR IGNORE INTO word_index (word, book_id) VALUES (?, ?)"


class SQLiteConnectionPool:
    """Thread-safe pool with a fixed number of leasable connections."""

    def __init__(
        self,
        db_path: Path | str,
        max_connections: int = 5,
        *,
        acquire_timeout: float = 10.0,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.max_connections = max_connections
        self.acquire_timeout = acquire_timeout
        self.busy_timeout_ms = busy_timeout_ms
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=max_connections)
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

        if str(db_path) == MEMORY_PATH:
            # Shared-cache URI so every pooled connection sees the same database.
            self.database = f"file:book_search_{uuid4().hex}?mode=memory&cache=shared"
            self.uri = True
        else:
            self.database = str(db_path)
            self.uri = False

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Lease a connection for the duration of the ``with`` block."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise BackendConnectionError("Connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._created < self.max_connections:
                conn = self._create_connection()
                self._created += 1
                return conn

        try:
            conn = self._idle.get(timeout=self.acquire_timeout)
        except queue.Empty as exc:
            raise BackendConnectionError(
                f"Timed out after {self.acquire_timeout:.1f}s waiting for a database connection"
            ) from exc
        if self._closed:
            self._release(conn)
            raise BackendConnectionError("Connection pool is closed")
        return conn

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if not self._closed:
                self._idle.put_nowait(conn)
                return
        # Leased connections outlive close_all() and are closed on return.
        _close_quietly(conn)

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.database,
                uri=self.uri,
                timeout=self.busy_timeout_ms / 1000,
                check_same_thread=False,
                isolation_level=None,
            )
            apply_connection_pragmas(conn, busy_timeout_ms=self.busy_timeout_ms)
        except sqlite3.Error as exc:
            raise BackendConnectionError(f"Unable to open SQLite database {self.database}: {exc}") from exc
        return conn

    def close_all(self) -> None:
        """Close idle connections now; leased ones close when they are released."""
        with self._lock:
            self._closed = True
            self._created = 0
            while True:
                try:
                    conn = self._idle.get_nowait()
                except queue.Empty:
                    break
                _close_quietly(conn)


def _close_quietly(conn: sqlite3.Connection) -> None:
    try:
        conn.close()
    except sqlite3.Error:
        pass  # Ignore errors during cleanup


class SqliteBackend(StorageBackend):
    """Relational backend storing metadata and word membership in SQLite tables."""

    name = "sqlite"

    def __init__(
        self,
        db_path: Path | str,
        *,
        pool_size: int = 5,
        acquire_timeout: float = 10.0,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        if str(db_path) != MEMORY_PATH:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._pool = SQLiteConnectionPool(
            db_path,
            max_connections=pool_size,
            acquire_timeout=acquire_timeout,
            busy_timeout_ms=busy_timeout_ms,
        )
        # Shared-cache memory databases vanish with their last connection.
        self._anchor: sqlite3.Connection | None = None
        if self._pool.uri:
            self._anchor = self._pool._create_connection()
        self._create_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._pool.connection() as conn:
            try:
                yield conn
            except sqlite3.Error as exc:
                try:
                    if conn.in_transaction:
                        conn.rollback()
                except sqlite3.Error:
                    logger.debug("Rollback skipped: connection unusable", exc_info=True)
                raise BackendConnectionError(f"SQLite operation failed: {exc}") from exc

    def _create_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    def test_connection(self) -> None:
        with self._connection() as conn:
            conn.execute("SELECT 1").fetchone()

    def store_book_metadata(self, metadata: BookMetadata) -> None:
        with self._connection() as conn:
            conn.execute(
                _UPSERT_BOOK,
                (
                    metadata.book_id,
                    metadata.title,
                    metadata.author,
                    metadata.language,
                    metadata.year,
                    metadata.word_count,
                    metadata.unique_words,
                ),
            )

    def add_word_to_index(self, word: str, book_id: int) -> None:
        with self._connection() as conn:
            conn.execute(_INSERT_WORD, (word, book_id))

    def add_words_to_index(self, words: Iterable[str], book_id: int) -> int:
        rows = [(word, book_id) for word in words]
        if not rows:
            return 0
        with self._connection() as conn:
            conn.execute("BEGIN")
            conn.executemany(_INSERT_WORD, rows)
            conn.execute("COMMIT")
        return len(rows)

    def get_books_for_word(self, word: str) -> set[int]:
        with self._connection() as conn:
            cursor = conn.execute("SELECT book_id FROM word_index WHERE word = ?", (word,))
            return {int(row[0]) for row in cursor}

    def get_book_metadata(self, book_id: int) -> BookMetadata:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_BOOK_COLUMNS)} FROM books WHERE book_id = ?",
                (book_id,),
            ).fetchone()
        if row is None:
            raise BookNotFoundError(book_id, "no metadata indexed")
        return BookMetadata.from_dict(dict(zip(_BOOK_COLUMNS, row, strict=True)))

    def list_book_ids(self) -> list[int]:
        with self._connection() as conn:
            return [int(row[0]) for row in conn.execute("SELECT book_id FROM books ORDER BY book_id")]

    def clear_index(self) -> None:
        with self._connection() as conn:
            conn.execute("BEGIN")
            conn.execute("DELETE FROM word_index")
            conn.execute("DELETE FROM books")
            conn.execute("COMMIT")
        logger.info("Cleared SQLite index at %s", self.db_path)

    def stats(self) -> IndexStats:
        with self._connection() as conn:
            books = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            words = conn.execute("SELECT COUNT(DISTINCT word) FROM word_index").fetchone()[0]
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        return IndexStats(
            books_indexed=int(books or 0),
            distinct_words=int(words or 0),
            index_size_mb=(int(page_count or 0) * int(page_size or 0)) / _BYTES_PER_MB,
        )

    def close(self) -> None:
        self._pool.close_all()
        if self._anchor is not None:
            try:
                self._anchor.close()
            except sqlite3.Error as exc:
                logger.warning("Failed to close SQLite anchor connection: %s", exc)
            self._anchor = None
