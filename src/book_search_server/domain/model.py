"""Domain model - value objects for books, queries and index state.

Value objects are immutable Pydantic models. Records that the index builder
completes in stages (``BookMetadata``) are updated through ``model_copy``
rather than mutation.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_LANGUAGE = "en"


class BookMetadata(BaseModel):
    """Structured metadata stored once per book id."""

    model_config = ConfigDict(frozen=True)

    book_id: int
    title: str = ""
    author: str = ""
    language: str = DEFAULT_LANGUAGE
    year: int | None = None
    word_count: int = Field(default=0, ge=0)
    unique_words: int = Field(default=0, ge=0)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookMetadata:
        return cls.model_validate(data)


class BookText(BaseModel):
    """Header and body text supplied by the ingestion collaborator."""

    model_config = ConfigDict(frozen=True)

    book_id: int
    header: str
    body: str


class SearchFilters(BaseModel):
    """Optional metadata constraints; every set filter must pass."""

    model_config = ConfigDict(frozen=True)

    author: str | None = None
    language: str | None = None
    year: int | None = None

    def matches(self, metadata: BookMetadata) -> bool:
        if self.author and self.author.lower() not in metadata.author.lower():
            return False
        if self.language and self.language.lower() != metadata.language.lower():
            return False
        if self.year is not None and metadata.year != self.year:
            return False
        return True

    def to_dict(self) -> dict[str, str]:
        """Only the filters that were provided, as strings."""
        payload: dict[str, str] = {}
        if self.author:
            payload["author"] = self.author
        if self.language:
            payload["language"] = self.language
        if self.year is not None:
            payload["year"] = str(self.year)
        return payload


class SearchResult(BaseModel):
    """A single ranked book in a search response."""

    model_config = ConfigDict(frozen=True)

    book_id: int
    title: str
    author: str
    language: str
    year: int | None = None
    score: int = Field(default=0, ge=0)
    matches: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Complete search response: query echo, applied filters and results."""

    model_config = ConfigDict(frozen=True)

    query: str
    filters: dict[str, str] = Field(default_factory=dict)
    count: int = 0
    results: list[SearchResult] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class IndexResult(BaseModel):
    """Outcome of indexing a single book."""

    model_config = ConfigDict(frozen=True)

    book_id: int
    status: str = "updated"
    words_indexed: int = 0


class RebuildState(str, Enum):
    """Lifecycle of a full-corpus rebuild."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class RebuildReport(BaseModel):
    """Summary of a rebuild run.

    Per-book failures never fail the run; they are aggregated here as
    ``books_failed`` and ``failed_ids``.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "rebuilt"
    books_processed: int = 0
    books_failed: int = 0
    failed_ids: list[int] = Field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def elapsed_time(self) -> str:
        return f"{self.elapsed_seconds:.2f}s"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "books_processed": self.books_processed,
            "indexed_count": self.books_processed,
            "books_failed": self.books_failed,
            "failed_ids": list(self.failed_ids),
            "elapsed_time": self.elapsed_time,
        }


class IndexStats(BaseModel):
    """Aggregate index counters reported by a storage backend."""

    model_config = ConfigDict(frozen=True)

    books_indexed: int = 0
    distinct_words: int = 0
    index_size_mb: float = 0.0
    last_update: str = "never"

    def to_dict(self) -> dict[str, Any]:
        return {
            "books_indexed": self.books_indexed,
            "last_update": self.last_update,
            "index_size_mb": round(self.index_size_mb, 4),
            "total_books": self.books_indexed,
            "total_words": self.distinct_words,
            "last_updated": self.last_update,
        }
