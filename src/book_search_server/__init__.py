"""Book search server: inverted-index indexing and keyword search over eBooks."""

__version__ = "0.1.0"
