# app/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="PostgreSQL connection URL",
    )

    # Authentication
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="API key for admin retention endpoints",
    )

    # Storage
    STORAGE_PROVIDER: str = Field(
        default="s3",
        description="Storage provider: s3, local",
    )
    LOCAL_STORAGE_PATH: str = Field(
        default="./storage",
        description="Path for local storage provider",
    )
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    S3_BUCKET: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )

    # Email Notifications
    RESEND_API_KEY: str | None = Field(
        default=None,
        description="Resend API key for export notifications",
    )
    EMAIL_FROM: str = Field(
        default="Saga <notifications@saga.family>",
        description="From address for export notifications",
    )
    EMAIL_ENABLED: bool = Field(
        default=True,
        description="Send an email when a requested export is ready",
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs. Disable for local development.",
    )

    # Exports
    EXPORT_EXPIRY_DAYS: int = Field(
        default=30,
        ge=1,
        description="Days a finished export stays downloadable",
    )
    EXPORT_STALE_HOURS: int = Field(
        default=2,
        ge=1,
        description="Queued/processing exports older than this are marked failed at startup",
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres URLs use postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("STORAGE_PROVIDER")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("s3", "local"):
            raise ValueError(f"Unknown storage provider: {v}. Available: s3, local")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
