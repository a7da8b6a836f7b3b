"""Application-wide settings for the certificate API."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    # Celery broker for rate limit side effects; in-process queue when unset
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    # Basic auth for admin endpoints (optional)
    auth_basic_username: Optional[str] = Field(default=None, env="AUTH_BASIC_USERNAME")
    auth_basic_password_hash: Optional[str] = Field(
        default=None, env="AUTH_BASIC_PASSWORD_HASH"
    )
    auth_basic_password_plain: Optional[str] = Field(
        default=None, env="AUTH_BASIC_PASSWORD_PLAIN"
    )
    # Issuer store (JSONL fallback when DATABASE_URL is unset)
    issuer_store_path: str = Field(
        default="storage/issuers.jsonl", env="ISSUER_STORE_PATH"
    )
    issuer_cache_ttl_seconds: int = Field(default=300, env="ISSUER_CACHE_TTL_SECONDS")
    issuer_lookup_timeout_seconds: float = Field(
        default=2.0, env="ISSUER_LOOKUP_TIMEOUT_SECONDS"
    )
    # Allow keyed requests through (unmetered) when the issuer store is down
    issuer_lookup_fail_open: bool = Field(default=True, env="ISSUER_LOOKUP_FAIL_OPEN")
    # Issuer rate limiting
    rate_limit_window_ms: int = Field(default=60_000, env="RATE_LIMIT_WINDOW_MS")
    rate_limit_free_per_window: int = Field(
        default=60, env="RATE_LIMIT_FREE_PER_WINDOW"
    )
    rate_limit_paid_per_window: int = Field(
        default=600, env="RATE_LIMIT_PAID_PER_WINDOW"
    )
    rate_limit_upgrade_threshold: float = Field(
        default=0.8, env="RATE_LIMIT_UPGRADE_THRESHOLD"
    )
    rate_limit_sweep_interval_ms: int = Field(
        default=60_000, env="RATE_LIMIT_SWEEP_INTERVAL_MS"
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
