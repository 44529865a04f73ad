"""Centralized configuration for book-search-server using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_BACKEND_ALIASES = {
    "kv": "kv",
    "memory": "kv",
    "sqlite": "sqlite",
    "relational": "sqlite",
}

# Server backends that are not provided, mapped to the local equivalent to suggest.
_UNSUPPORTED_BACKENDS = {
    "redis": "kv",
    "postgres": "sqlite",
    "postgresql": "sqlite",
}


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Values are validated once at startup; the resulting object is passed
    explicitly to the backend factory and the app builder.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Storage backend
    backend_type: Literal["kv", "sqlite"] = Field(
        default="kv",
        description="Storage backend: 'kv' (set-backed key-value store) or 'sqlite' (relational tables)",
    )
    sqlite_path: Path = Field(default=Path("data/index.db"), description="SQLite database file (':memory:' allowed)")
    sqlite_pool_size: int = Field(default=5, ge=1, le=64, description="Maximum pooled SQLite connections")
    sqlite_busy_timeout_ms: int = Field(default=5000, ge=0, description="Per-statement SQLite busy timeout")
    pool_acquire_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Maximum wait for a free pooled connection"
    )
    kv_snapshot_path: Path | None = Field(
        default=None, description="Optional JSON snapshot file for the key-value backend"
    )

    # Ingestion collaborator
    datalake_dir: Path = Field(default=Path("datalake"), description="Root directory of downloaded books")

    # Request handling
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request backend time budget")
    rebuild_timeout_seconds: float = Field(default=3600.0, gt=0, description="Time budget for a full rebuild")

    # Server settings
    service_name: str = Field(default="book-search-server", description="Service name reported by /status")
    service_role: Literal["all", "indexing", "search"] = Field(
        default="all", description="Which route groups to serve"
    )
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=7002, ge=1, le=65535, description="Bind port")

    # Observability
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    otlp_endpoint: str = Field(default="", description="OTLP/HTTP trace endpoint; empty disables export")

    @field_validator("backend_type", mode="before")
    @classmethod
    def _normalize_backend(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _UNSUPPORTED_BACKENDS:
                raise ValueError(
                    f"Backend '{value}' is not supported; "
                    f"use '{_UNSUPPORTED_BACKENDS[normalized]}' for the local equivalent"
                )
            if normalized not in _BACKEND_ALIASES:
                raise ValueError(
                    f"Unknown backend type '{value}'. Use one of: {', '.join(sorted(_BACKEND_ALIASES))}"
                )
            return _BACKEND_ALIASES[normalized]
        return value

    @field_validator("kv_snapshot_path", mode="before")
    @classmethod
    def _blank_snapshot_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Invalid log level '{value}'")
        return normalized

    @model_validator(mode="after")
    def _split_roles_need_shared_storage(self) -> "Settings":
        if self.service_role == "all":
            return self
        if self.backend_type == "kv" or str(self.sqlite_path) == ":memory:":
            raise ValueError(
                f"service_role '{self.service_role}' cannot share a process-local index; "
                "use BACKEND_TYPE=sqlite with a SQLITE_PATH file both roles can reach"
            )
        return self

    def serves_indexing(self) -> bool:
        return self.service_role in ("all", "indexing")

    def serves_search(self) -> bool:
        return self.service_role in ("all", "search")
