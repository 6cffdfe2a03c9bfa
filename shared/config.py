"""
Shared Configuration Module

Centralized configuration for the enrollment engine using Pydantic Settings.
Supports environment variables, .env files, and runtime overrides.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine-wide configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ENROLLMENT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = Field(default=False, description="Echo SQL and enable debug logging")

    # Database - PostgreSQL
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "enrollment"

    @property
    def async_database_url(self) -> str:
        """Construct async PostgreSQL database URL."""
        return f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Transaction boundaries
    operation_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound for one register/drop/remove unit"
    )
    store_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for a unit that hits StoreUnavailable"
    )
    store_retry_base_delay: float = Field(
        default=0.05, ge=0, description="Base delay in seconds for exponential backoff"
    )

    # Waitlist promotion
    max_promotion_scan: int | None = Field(
        default=None,
        ge=1,
        description="Optional cap on candidates inspected per freed seat (queue length otherwise)",
    )

    # Drop deadline
    drop_deadline_grace_minutes: int = Field(default=0, ge=0)

    # Requirement policies
    department_approval_min_level: int = 200
    advisor_approval_min_level: int = 400
    advisor_approval_min_credits: int = 24


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Engine settings singleton
    """
    return Settings()


# Convenience exports
settings = get_settings()
