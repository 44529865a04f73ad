"""Adapters layer - ingestion collaborator implementations."""

from .book_source import (
    BookSource,
    DatalakeBookSource,
    InMemoryBookSource,
    split_gutenberg_text,
)


__all__ = [
    "BookSource",
    "DatalakeBookSource",
    "InMemoryBookSource",
    "split_gutenberg_text",
]
