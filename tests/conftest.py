"""Shared test fixtures and configuration."""

import logging
import os
from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


# Complete test environment that overrides every config value read from the environment
TEST_ENV = {
    "BACKEND_TYPE": "kv",
    "SQLITE_PATH": ":memory:",
    "SQLITE_POOL_SIZE": "2",
    "SQLITE_BUSY_TIMEOUT_MS": "2000",
    "POOL_ACQUIRE_TIMEOUT_SECONDS": "5",
    "KV_SNAPSHOT_PATH": "",
    "DATALAKE_DIR": "datalake",
    "REQUEST_TIMEOUT_SECONDS": "10",
    "REBUILD_TIMEOUT_SECONDS": "60",
    "SERVICE_NAME": "book-search-test",
    "SERVICE_ROLE": "all",
    "HOST": "127.0.0.1",
    "PORT": "17002",
    "LOG_LEVEL": "info",
    "LOG_JSON": "false",
    "OTLP_ENDPOINT": "",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value

from book_search_server.adapters.book_source import InMemoryBookSource
from book_search_server.search.sqlite_storage import SqliteBackend
from book_search_server.search.storage import KeyValueBackend
from tests.fixtures.sample_books import SAMPLE_BOOKS


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset environment variables to test defaults before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def book_source():
    """In-memory ingestion collaborator preloaded with the sample books."""
    return InMemoryBookSource(SAMPLE_BOOKS)


@pytest.fixture
def kv_backend():
    backend = KeyValueBackend()
    yield backend
    backend.close()


@pytest.fixture
def sqlite_backend(tmp_path):
    backend = SqliteBackend(tmp_path / "index.db", pool_size=2, acquire_timeout=5.0)
    yield backend
    backend.close()


@pytest.fixture(params=["kv", "sqlite"])
def backend(request, tmp_path):
    """Every storage backend variant, for contract tests."""
    if request.param == "kv":
        instance = KeyValueBackend()
    else:
        instance = SqliteBackend(tmp_path / "contract.db", pool_size=2, acquire_timeout=5.0)
    yield instance
    instance.close()


@pytest.fixture
def restore_root_logging():
    """Undo handler and level changes made by ``configure_logging``."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
