"""Best-effort metadata extraction from eBook header text.

Project Gutenberg headers carry ``Label: value`` lines::

    Title: Pride and Prejudice
    Author: Jane Austen
    Release Date: June, 1998 [eBook #1342]
    Language: English

Labels are matched case-insensitively and each value stops at the end of its
line. Missing labels fall back to defaults; extraction never raises.
"""

from __future__ import annotations

import re

from book_search_server.domain.model import DEFAULT_LANGUAGE, BookMetadata


_TITLE_RE = re.compile(r"title:[ \t]*(.+)", re.IGNORECASE)
_AUTHOR_RE = re.compile(r"author:[ \t]*(.+)", re.IGNORECASE)
_LANGUAGE_RE = re.compile(r"language:[ \t]*(.+)", re.IGNORECASE)
_YEAR_RE = re.compile(r"(?:release date|posting date|release|date):[ \t]*.*?(\d{4})", re.IGNORECASE)


def _first_value(pattern: re.Pattern[str], header: str) -> str | None:
    match = pattern.search(header)
    if match is None:
        return None
    value = match.group(1).strip()
    return value or None


def extract_year(header: str) -> int | None:
    """Return the first 4-digit number on a release/posting/date line."""
    match = _YEAR_RE.search(header)
    if match is None:
        return None
    return int(match.group(1))


def extract_metadata(header: str, book_id: int) -> BookMetadata:
    """Parse ``header`` into :class:`BookMetadata`.

    ``word_count`` and ``unique_words`` stay at zero; the index builder fills
    them in from the body text.
    """
    return BookMetadata(
        book_id=book_id,
        title=_first_value(_TITLE_RE, header) or "",
        author=_first_value(_AUTHOR_RE, header) or "",
        language=_first_value(_LANGUAGE_RE, header) or DEFAULT_LANGUAGE,
        year=extract_year(header),
    )
