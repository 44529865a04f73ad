"""Operator CLI for indexing and querying without the HTTP server.

Reads the same environment-driven settings as the server, creates the
configured backend and runs one operation against it. The key-value backend
only outlives the process when ``KV_SNAPSHOT_PATH`` is set.
"""

# ruff: noqa: T201  # CLI intentionally prints operator feedback

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path
import sys
import textwrap

import orjson
from pydantic import ValidationError

from book_search_server.adapters.book_source import DatalakeBookSource
from book_search_server.config import Settings
from book_search_server.domain.errors import BookSearchError, InvalidQueryError
from book_search_server.domain.model import SearchFilters, SearchResponse
from book_search_server.observability import configure_logging
from book_search_server.search.storage import StorageBackend
from book_search_server.search.storage_factory import create_backend
from book_search_server.service_layer.indexing_service import IndexBuilder
from book_search_server.service_layer.search_service import QueryEngine


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="book-search",
        description="Index and search Project Gutenberg books",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """
            Examples:
              book-search index 1342 84
              book-search rebuild --datalake ./datalake
              book-search search "pride prejudice" --author austen --limit 5
              BACKEND_TYPE=sqlite SQLITE_PATH=./index.db book-search status
            """
        ).strip(),
    )
    parser.add_argument("--backend", choices=["kv", "sqlite"], help="Override BACKEND_TYPE")
    parser.add_argument("--datalake", type=Path, help="Override DATALAKE_DIR")
    parser.add_argument("--sqlite-path", type=Path, help="Override SQLITE_PATH")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index one or more books by id")
    index_parser.add_argument("book_ids", nargs="+", type=int, metavar="BOOK_ID")

    subparsers.add_parser("rebuild", help="Clear the index and re-index every book in the datalake")

    search_parser = subparsers.add_parser("search", help="Run a keyword query")
    search_parser.add_argument("query")
    search_parser.add_argument("--author", help="Case-insensitive author substring")
    search_parser.add_argument("--language", help="Exact language code (case-insensitive)")
    search_parser.add_argument("--year", type=int, help="Exact release year")
    search_parser.add_argument("--limit", type=int, help="Maximum results to show")
    search_parser.add_argument("--json", action="store_true", help="Print the raw JSON response")

    subparsers.add_parser("status", help="Show index statistics")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.backend:
        overrides["backend_type"] = args.backend
    if args.datalake:
        overrides["datalake_dir"] = args.datalake
    if args.sqlite_path:
        overrides["sqlite_path"] = args.sqlite_path
    return Settings(**overrides)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(level="DEBUG" if args.verbose else "WARNING", json_output=False)

    try:
        backend = create_backend(settings)
        backend.test_connection()
    except BookSearchError as exc:
        print(f"Backend unavailable: {exc}", file=sys.stderr)
        return 1

    try:
        return _dispatch(args, settings, backend)
    finally:
        backend.close()


def _dispatch(args: argparse.Namespace, settings: Settings, backend: StorageBackend) -> int:
    if args.command == "search":
        return _run_search(args, QueryEngine(backend))

    index_builder = IndexBuilder(backend, DatalakeBookSource(settings.datalake_dir))
    if args.command == "index":
        return _run_index(args.book_ids, index_builder)
    if args.command == "rebuild":
        return _run_rebuild(settings, index_builder)
    return _run_status(index_builder)


def _run_index(book_ids: Sequence[int], index_builder: IndexBuilder) -> int:
    failures = 0
    for book_id in book_ids:
        try:
            result = index_builder.index_book(book_id)
        except BookSearchError as exc:
            failures += 1
            print(f"- {book_id:<8} ERROR    {exc}")
            continue
        print(f"- {book_id:<8} {result.status:<8} {result.words_indexed} words")
    return 1 if failures else 0


def _run_rebuild(settings: Settings, index_builder: IndexBuilder) -> int:
    print("=== Book Search Rebuild ===")
    print(f"Datalake: {settings.datalake_dir}")
    print(f"Backend:  {index_builder.backend.name}")
    print()
    try:
        report = index_builder.rebuild_index()
    except BookSearchError as exc:
        print(f"Rebuild failed: {exc}", file=sys.stderr)
        return 1

    print(f"Books processed: {report.books_processed}")
    print(f"Books failed:    {report.books_failed}")
    print(f"Elapsed:         {report.elapsed_time}")
    if report.failed_ids:
        preview = ", ".join(str(book_id) for book_id in report.failed_ids[:10])
        remaining = len(report.failed_ids) - 10
        suffix = f" (+{remaining} more)" if remaining > 0 else ""
        print(f"Failed ids:      {preview}{suffix}")
    return 0


def _run_search(args: argparse.Namespace, query_engine: QueryEngine) -> int:
    filters = SearchFilters(author=args.author, language=args.language, year=args.year)
    try:
        response = query_engine.search(args.query, filters, args.limit)
    except InvalidQueryError as exc:
        print(f"Invalid query: {exc}", file=sys.stderr)
        return 2
    except BookSearchError as exc:
        print(f"Search failed: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(orjson.dumps(response.to_dict(), option=orjson.OPT_INDENT_2).decode("utf-8"))
    else:
        _print_response(response)
    return 0


def _print_response(response: SearchResponse) -> None:
    print(f"{response.count} result(s) for '{response.query}'")
    for result in response.results:
        year = result.year if result.year is not None else "----"
        print(f"  [{result.score}] {result.book_id:<8} {year}  {result.title} ({result.author or 'unknown'})")


def _run_status(index_builder: IndexBuilder) -> int:
    try:
        stats = index_builder.index_status()
    except BookSearchError as exc:
        print(f"Status unavailable: {exc}", file=sys.stderr)
        return 1
    print(orjson.dumps(stats.to_dict(), option=orjson.OPT_INDENT_2).decode("utf-8"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
