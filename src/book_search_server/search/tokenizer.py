"""Tokenizer shared by indexing and querying.

Indexing and search must agree on the vocabulary, so body text, titles and
queries all go through :func:`tokenize`. The pipeline keeps the tokenizer /
filter split so the normalization rules stay individually testable:

* the input is lowercased as a whole,
* maximal runs of alphabetic characters (any script) become tokens,
* tokens of length two or less are dropped,
* the result is deduplicated into a set.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from itertools import groupby
import re
from typing import Protocol


MIN_TOKEN_LENGTH = 3


@dataclass(frozen=True, slots=True)
class Token:
    """A token and its character span in the (lowercased) source text."""

    text: str
    start_char: int
    end_char: int


class TokenFilter(Protocol):
    """Protocol implemented by token filters."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class AlphaRunTokenizer:
    """Yields maximal runs of alphabetic characters, Unicode letters included."""

    def __init__(self, pattern: str = r"[^\W\d_]+") -> None:
        self.pattern = re.compile(pattern)

    def __call__(self, text: str) -> Iterator[Token]:
        for match in self.pattern.finditer(text):
            run = match.group(0)
            if run.isalpha():
                yield Token(text=run, start_char=match.start(), end_char=match.end())
                continue
            # Numeric word characters such as "²" match the class but are not letters.
            offset = match.start()
            for is_alpha, group in groupby(run, key=str.isalpha):
                part = "".join(group)
                if is_alpha:
                    yield Token(text=part, start_char=offset, end_char=offset + len(part))
                offset += len(part)


class MinLengthFilter:
    """Drops tokens shorter than ``min_length`` characters."""

    def __init__(self, min_length: int = MIN_TOKEN_LENGTH) -> None:
        self.min_length = min_length

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if len(token.text) >= self.min_length:
                yield token


class TokenizerPipeline:
    """Lowercase the input, tokenize, then run the filters in order."""

    def __init__(self, tokenizer: AlphaRunTokenizer | None = None, filters: Sequence[TokenFilter] | None = None) -> None:
        self.tokenizer = tokenizer or AlphaRunTokenizer()
        self.filters = list(filters) if filters is not None else [MinLengthFilter()]

    def tokens(self, text: str) -> list[Token]:
        stream: Iterable[Token] = self.tokenizer(text.lower())
        for token_filter in self.filters:
            stream = token_filter(stream)
        return list(stream)

    def __call__(self, text: str) -> set[str]:
        if not text:
            return set()
        return {token.text for token in self.tokens(text)}


_DEFAULT_PIPELINE = TokenizerPipeline()


def tokenize(text: str) -> set[str]:
    """Return the deduplicated, normalized token set for ``text``."""
    return _DEFAULT_PIPELINE(text)
