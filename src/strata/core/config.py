# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Application configuration via environment variables and .env files.

:class:`DatabaseConfig` is the typed description of one named connection.
:class:`Settings` reads the ``STRATA_*`` environment and can produce a
:class:`DatabaseConfig` for the default connection.
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from strata.core.constants import (
    BACKEND_ALIASES,
    DEFAULT_CACHE_TTL,
    DEFAULT_LEDGER_TABLE,
    DEFAULT_PORTS,
    DEFAULT_SLOW_QUERY_MS,
    BackendType,
)


def _parse_backend_type(value: object) -> object:
    if isinstance(value, str):
        try:
            return BACKEND_ALIASES[value.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Unknown database type {value!r}. Expected one of: "
                + ", ".join(sorted(BACKEND_ALIASES))
            ) from None
    return value


class ConnectionSettings(BaseModel):
    """Where and how to reach the database."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int | None = None
    database: str = ""
    username: str = ""
    password: str = ""
    path: str = ""  # sqlite file, or ":memory:"
    uri: str = ""  # full DSN; wins over host/port/credentials
    auth_source: str = ""


class PoolConfig(BaseModel):
    """Connection pool bounds and retry policy."""

    model_config = ConfigDict(frozen=True)

    min: int = Field(default=1, ge=0)
    max: int = Field(default=10, ge=1)
    idle_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    acquire_timeout_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> PoolConfig:
        if self.min > self.max:
            raise ValueError(f"pool.min ({self.min}) must not exceed pool.max ({self.max})")
        return self


class DatabaseConfig(BaseModel):
    """Immutable description of one database connection."""

    model_config = ConfigDict(frozen=True)

    type: BackendType
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    pool: PoolConfig = Field(default_factory=PoolConfig)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: object) -> object:
        return _parse_backend_type(v)

    @model_validator(mode="after")
    def _check_connection(self) -> DatabaseConfig:
        conn = self.connection
        if self.type is BackendType.SQLITE:
            if not conn.path:
                raise ValueError("sqlite connections require connection.path")
        elif not (conn.uri or conn.database):
            raise ValueError(
                f"{self.type} connections require connection.database or connection.uri"
            )
        return self

    @property
    def is_memory_sqlite(self) -> bool:
        return self.type is BackendType.SQLITE and self.connection.path in ("", ":memory:")

    def dsn(self) -> str:
        """Return a driver URI for postgres/mongodb connections."""
        conn = self.connection
        if conn.uri:
            return conn.uri
        if self.type is BackendType.SQLITE:
            return conn.path

        scheme = "postgresql" if self.type is BackendType.POSTGRESQL else "mongodb"
        port = conn.port or DEFAULT_PORTS[self.type]
        auth = ""
        if conn.username:
            auth = quote(conn.username, safe="")
            if conn.password:
                auth += ":" + quote(conn.password, safe="")
            auth += "@"
        url = f"{scheme}://{auth}{conn.host}:{port}/{conn.database}"
        if self.type is BackendType.MONGODB and conn.auth_source:
            url += f"?authSource={conn.auth_source}"
        return url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STRATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    # Database
    db_type: str = "sqlite"  # "sqlite", "postgresql" or "mongodb"
    db_host: str = "localhost"
    db_port: int | None = None
    db_name: str = ""
    db_user: str = ""
    db_password: str = ""
    db_path: str = "strata.db"
    db_uri: str = ""

    # Pool
    pool_min: int = 1
    pool_max: int = 10
    pool_idle_timeout: float = 30.0
    pool_max_retries: int = 3
    pool_retry_delay_ms: int = 1000
    pool_acquire_timeout: float = 30.0

    # Query logging
    query_log_enabled: bool = True
    slow_query_ms: float = DEFAULT_SLOW_QUERY_MS

    # Cache
    cache_backend: str = "memory"  # "memory" or "redis"
    cache_ttl: int = DEFAULT_CACHE_TTL
    cache_max_size: int = 4096
    redis_url: str = "redis://localhost:6379/0"

    # Migrations
    migrations_dir: Path = Path("migrations")
    migrations_table: str = DEFAULT_LEDGER_TABLE

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("db_type", mode="before")
    @classmethod
    def _normalize_db_type(cls, v: object) -> object:
        return str(_parse_backend_type(v)) if isinstance(v, str) else v

    def database_config(self) -> DatabaseConfig:
        """Build the :class:`DatabaseConfig` for the default connection."""
        return DatabaseConfig(
            type=self.db_type,
            connection=ConnectionSettings(
                host=self.db_host,
                port=self.db_port,
                database=self.db_name,
                username=self.db_user,
                password=self.db_password,
                path=self.db_path,
                uri=self.db_uri,
            ),
            pool=PoolConfig(
                min=self.pool_min,
                max=self.pool_max,
                idle_timeout_seconds=self.pool_idle_timeout,
                max_retries=self.pool_max_retries,
                retry_delay_ms=self.pool_retry_delay_ms,
                acquire_timeout_seconds=self.pool_acquire_timeout,
            ),
        )


def get_settings() -> Settings:
    return Settings()
