"""Persisted configuration for the pgvector provider, read from the environment."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Provider settings.

    These are the values the connection resolver falls back to when a
    call brings no override of its own. Variables are read unprefixed
    (POSTGRES_HOST, DB_POOL_MAX_SIZE, ...) from the environment or a
    local .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Vector provider implementation (see src/vectorstore/registry.py)
    vdb_provider: str = "postgres"

    # PostgreSQL (pgvector)
    postgres_host: str | None = None
    postgres_port: int | None = Field(default=5432, ge=1, le=65535)
    postgres_username: str | None = None
    # Name of the secret holding the password, not the password itself
    postgres_password: str | None = None
    postgres_default_database: str | None = None

    db_pool_min_size: int = Field(default=1, ge=0)
    db_pool_max_size: int = Field(default=10, ge=1)
    db_command_timeout: float = Field(default=60.0, gt=0.0)

    # Observability
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "pgvector-provider"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def postgres_configured(self) -> bool:
        """A Postgres host is set; the other connection fields may still be missing."""
        return bool(self.postgres_host)


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once per process; tests reset with get_settings.cache_clear()."""
    return Settings()
