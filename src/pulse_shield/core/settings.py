"""Application settings and configuration.

This module defines all configuration options for the Pulse Shield defense core.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files. Policy
    thresholds that are part of the wire contract (reputation deltas, anomaly
    heuristics, the per-action rate-limit table) live next to the services that
    apply them and are not configurable here.
    """

    # Application metadata
    app_name: str = Field(default="Pulse Shield", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Shared window store. "memory" keeps state in-process and is meant for
    # tests and single-worker development only.
    store_backend: Literal["redis", "memory"] = Field(default="redis", alias="STORE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    redis_socket_timeout: float = Field(default=0.5, alias="REDIS_SOCKET_TIMEOUT")

    # Durable store for API key records
    database_url: str = Field(
        default="sqlite+aiosqlite:///./pulse_shield.db",
        alias="DATABASE_URL",
    )
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    create_tables_on_startup: bool = Field(default=False, alias="CREATE_TABLES_ON_STARTUP")

    # API keys
    api_key_prefix: str = Field(default="rtp", alias="API_KEY_PREFIX")
    api_key_cache_ttl_seconds: int = Field(default=86_400 * 30, alias="API_KEY_CACHE_TTL_SECONDS")
    api_key_refill_ttl_seconds: int = Field(default=3600, alias="API_KEY_REFILL_TTL_SECONDS")

    # Brute-force protection
    brute_force_max_attempts: int = Field(default=5, alias="BRUTE_FORCE_MAX_ATTEMPTS")
    brute_force_window_seconds: int = Field(default=300, alias="BRUTE_FORCE_WINDOW_SECONDS")
    brute_force_block_seconds: int = Field(default=900, alias="BRUTE_FORCE_BLOCK_SECONDS")

    # IP reputation
    ip_reputation_ttl_seconds: int = Field(default=86_400 * 7, alias="IP_REPUTATION_TTL_SECONDS")
    ip_block_default_seconds: int = Field(default=86_400, alias="IP_BLOCK_DEFAULT_SECONDS")

    # Suspicious activity history
    suspicious_max_entries: int = Field(default=100, alias="SUSPICIOUS_MAX_ENTRIES")
    suspicious_ttl_seconds: int = Field(default=86_400 * 30, alias="SUSPICIOUS_TTL_SECONDS")

    # Peers allowed to report the client address through X-Forwarded-For
    trusted_proxies: list[str] = Field(default=[], alias="TRUSTED_PROXIES")

    # CORS configuration for the admin surface
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        if url.startswith("sqlite+aiosqlite"):
            return url.replace("sqlite+aiosqlite", "sqlite", 1)
        return url


settings = Settings()
