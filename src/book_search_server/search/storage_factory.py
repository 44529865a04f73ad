"""Storage factory for choosing between the key-value and SQLite backends."""

from __future__ import annotations

import logging

from book_search_server.config import Settings
from book_search_server.search.sqlite_storage import SqliteBackend
from book_search_server.search.storage import KeyValueBackend, StorageBackend


logger = logging.getLogger(__name__)


def create_backend(settings: Settings) -> StorageBackend:
    """Create the configured backend. Each call returns a new instance."""
    if settings.backend_type == "sqlite":
        logger.info("Using SQLite backend at %s", settings.sqlite_path)
        return SqliteBackend(
            settings.sqlite_path,
            pool_size=settings.sqlite_pool_size,
            acquire_timeout=settings.pool_acquire_timeout_seconds,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
    logger.info("Using key-value backend (snapshot: %s)", settings.kv_snapshot_path or "disabled")
    return KeyValueBackend(settings.kv_snapshot_path)
