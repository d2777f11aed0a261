"""
Application settings using Pydantic Settings.

This module provides type-safe configuration management using
environment variables and .env files.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from src.shared.constants import (
    MAX_ACTIVE_SESSIONS_PER_USER,
    SESSION_CACHE_TTL_SECONDS,
    SESSION_IDLE_THRESHOLD_SECONDS,
    SYNC_RECENT_MESSAGES,
)

STORAGE_BACKENDS = ("memory", "postgres")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """

    # ========================================================================
    # Application Configuration
    # ========================================================================

    app_name: str = "Draft Session Manager"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # ========================================================================
    # API Server Configuration
    # ========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1

    # ========================================================================
    # Session Configuration
    # ========================================================================

    storage_backend: str = "memory"  # memory | postgres
    session_max_active_per_user: int = MAX_ACTIVE_SESSIONS_PER_USER
    session_cache_ttl_seconds: int = SESSION_CACHE_TTL_SECONDS
    session_cache_max_entries: Optional[int] = None
    session_idle_threshold_seconds: int = SESSION_IDLE_THRESHOLD_SECONDS
    session_optimistic_locking: bool = True
    sync_recent_messages: int = SYNC_RECENT_MESSAGES

    # ========================================================================
    # Database Configuration
    # ========================================================================

    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_pass: Optional[str] = None
    db_host: Optional[str] = None
    db_host_docker: Optional[str] = None
    db_port: int = 5432
    docker: bool = False
    db_min_connections: int = 1
    db_max_connections: int = 10
    db_statement_timeout_ms: int = 5000

    # ========================================================================
    # CORS Configuration
    # ========================================================================

    cors_enabled: bool = True
    cors_origins: str = "*"  # Comma-separated origins

    # ========================================================================
    # Pydantic Settings Configuration
    # ========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Computed Properties
    # ========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        """Convert comma-separated origins to list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def effective_db_host(self) -> Optional[str]:
        """Docker deployments reach the database under a different host name."""
        return self.db_host_docker if self.docker else self.db_host

    # ========================================================================
    # Validation
    # ========================================================================

    def validate_settings(self) -> None:
        """
        Validate settings at startup.

        Raises:
            ValueError: If critical settings are invalid
        """
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}"
            )

        if self.session_max_active_per_user < 1:
            raise ValueError("session_max_active_per_user must be >= 1")

        if self.session_cache_ttl_seconds <= 0:
            raise ValueError("session_cache_ttl_seconds must be > 0")

        if self.session_idle_threshold_seconds <= 0:
            raise ValueError("session_idle_threshold_seconds must be > 0")

        if self.sync_recent_messages < 0:
            raise ValueError("sync_recent_messages must be >= 0")

        if self.db_min_connections < 1 or self.db_max_connections < self.db_min_connections:
            raise ValueError("db connection pool bounds are invalid")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure we only load settings once.
    Use this in FastAPI dependencies.

    Returns:
        Settings instance
    """
    settings = Settings()
    settings.validate_settings()
    return settings
