"""
sqlcacher Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "cacher"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="sqlcacher", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")

    # ═══════════════════════════════════════════════════════════════
    # DATABASE
    # ═══════════════════════════════════════════════════════════════
    database_url: str | None = Field(
        default=None, description="SQLAlchemy async database URL"
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # ═══════════════════════════════════════════════════════════════
    # REDIS CACHE
    # ═══════════════════════════════════════════════════════════════
    redis_url: str | None = Field(default=None, description="Redis URL")
    redis_password: str | None = Field(default=None, description="Redis password")

    # ═══════════════════════════════════════════════════════════════
    # QUERY CACHING
    # ═══════════════════════════════════════════════════════════════
    cache_key_prefix: str = Field(
        default=DEFAULT_KEY_PREFIX, description="Prefix for every cache key"
    )
    cache_ttl_seconds: int = Field(
        default=0, ge=0, description="Default TTL for cached results (0 = no expiry)"
    )
    cache_fallback_to_memory: bool = Field(
        default=True, description="Use the in-memory store when Redis is unreachable"
    )
    cache_memory_max_size: int = Field(
        default=10000, ge=1, description="Max entries held by the in-memory store"
    )

    @field_validator("cache_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("Cache key prefix cannot be empty")
        if ":" in v:
            raise ValueError("Cache key prefix cannot contain ':'")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if "://" not in v:
            raise ValueError("Database URL must be a SQLAlchemy URL")
        if v.startswith(("sqlite://", "postgresql://", "mysql://")):
            logger.warning(
                "database_url_sync_driver: use an async driver such as "
                "sqlite+aiosqlite or postgresql+asyncpg"
            )
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton settings instance
settings = get_settings()
