"""Ingestion collaborator: where the index builder gets book text from.

The ingestion service downloads Project Gutenberg eBooks into a datalake
directory. A book is stored either as a split pair::

    datalake/20240101/12/1342_header.txt
    datalake/20240101/12/1342_body.txt

or as the raw download ``1342.txt``, which is split on the Gutenberg
START/END markers when read. Partition directories are arbitrary; the
datalake is searched recursively.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
import logging
from pathlib import Path
import re

from book_search_server.domain.errors import BookNotFoundError, CatalogUnavailableError
from book_search_server.domain.model import BookText


logger = logging.getLogger(__name__)

START_MARKER = "*** START OF THE PROJECT GUTENBERG EBOOK"
END_MARKER = "*** END OF THE PROJECT GUTENBERG EBOOK"

HEADER_SUFFIX = "_header.txt"
BODY_SUFFIX = "_body.txt"

_SPLIT_FILE_RE = re.compile(r"^(\d+)_(header|body)\.txt$")
_RAW_FILE_RE = re.compile(r"^(\d+)\.txt$")


def split_gutenberg_text(text: str) -> tuple[str, str]:
    """Split a raw eBook into ``(header, body)``.

    The header is everything before the START marker; the body runs from the
    line after the START marker up to the END marker. Without both markers
    the whole text is treated as header and the body is empty.
    """
    start_pos = text.find(START_MARKER)
    if start_pos == -1:
        return text, ""
    end_pos = text.find(END_MARKER)
    if end_pos == -1:
        return text, ""
    header = text[:start_pos]
    newline = text.find("\n", start_pos)
    body_start = newline + 1 if newline != -1 else start_pos
    return header, text[body_start:end_pos]


class BookSource(ABC):
    """Supplies header/body text for book ids and enumerates the catalog."""

    @abstractmethod
    def locate(self, book_id: int) -> BookText:
        """Return the book's text or raise :class:`BookNotFoundError`."""
        raise NotImplementedError

    @abstractmethod
    def list_known_ids(self) -> list[int]:
        """Return every book id the source knows about, ascending."""
        raise NotImplementedError


class DatalakeBookSource(BookSource):
    """Reads books from a filesystem datalake."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def locate(self, book_id: int) -> BookText:
        if not self.root.is_dir():
            raise BookNotFoundError(book_id, f"datalake {self.root} does not exist")

        header_path = self._find(f"{book_id}{HEADER_SUFFIX}", book_id)
        body_path = self._find(f"{book_id}{BODY_SUFFIX}", book_id)
        if header_path is not None and body_path is not None:
            return BookText(
                book_id=book_id,
                header=self._read(header_path, book_id),
                body=self._read(body_path, book_id),
            )

        raw_path = self._find(f"{book_id}.txt", book_id)
        if raw_path is not None:
            header, body = split_gutenberg_text(self._read(raw_path, book_id))
            return BookText(book_id=book_id, header=header, body=body)

        raise BookNotFoundError(book_id, "files not found in datalake")

    def list_known_ids(self) -> list[int]:
        if not self.root.is_dir():
            logger.warning("Datalake %s does not exist; catalog is empty", self.root)
            return []

        parts: dict[int, set[str]] = {}
        raw_ids: set[int] = set()
        try:
            for path in self.root.rglob("*.txt"):
                if not path.is_file():
                    continue
                if match := _SPLIT_FILE_RE.match(path.name):
                    parts.setdefault(int(match.group(1)), set()).add(match.group(2))
                elif match := _RAW_FILE_RE.match(path.name):
                    raw_ids.add(int(match.group(1)))
        except OSError as exc:
            raise CatalogUnavailableError(f"Unable to scan datalake {self.root}: {exc}") from exc

        split_ids = {book_id for book_id, kinds in parts.items() if kinds == {"header", "body"}}
        return sorted(split_ids | raw_ids)

    def _find(self, filename: str, book_id: int) -> Path | None:
        # Latest partition wins when a book was downloaded more than once.
        try:
            matches = sorted(path for path in self.root.rglob(filename) if path.is_file())
        except OSError as exc:
            raise BookNotFoundError(book_id, f"unable to search datalake: {exc}") from exc
        return matches[-1] if matches else None

    @staticmethod
    def _read(path: Path, book_id: int) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise BookNotFoundError(book_id, f"unable to read {path.name}: {exc}") from exc


class InMemoryBookSource(BookSource):
    """In-memory book source for tests and fixtures."""

    def __init__(self, books: Mapping[int, tuple[str, str]] | None = None) -> None:
        self._books: dict[int, tuple[str, str]] = dict(books or {})
        self._catalog_extra: set[int] = set()

    def add(self, book_id: int, header: str, body: str) -> None:
        self._books[book_id] = (header, body)

    def announce(self, book_id: int) -> None:
        """List ``book_id`` in the catalog without providing its text."""
        self._catalog_extra.add(book_id)

    def locate(self, book_id: int) -> BookText:
        try:
            header, body = self._books[book_id]
        except KeyError:
            raise BookNotFoundError(book_id) from None
        return BookText(book_id=book_id, header=header, body=body)

    def list_known_ids(self) -> list[int]:
        return sorted(set(self._books) | self._catalog_extra)
