"""
Configuration management for the diabetes risk engine.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "emr"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    database_url_override: Optional[str] = None

    # Risk engine
    risk_rules_path: Optional[Path] = None
    assessment_max_age_hours: int = 720
    signal_fetch_timeout_seconds: float = 10.0

    # Bulk assessment
    bulk_max_workers: int = Field(default=8, ge=1)
    bulk_max_patients: int = Field(default=500, ge=1)
    bulk_assess_timeout_seconds: float = 120.0

    # Dashboard
    dashboard_default_limit: int = 50
    dashboard_max_limit: int = 500

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "EMR Diabetes Risk API"
    api_version: str = "0.1.0"
    cors_allow_origins: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_file_path: Path = Field(default=Path("logs/app.log"))

    # Environment
    environment: str = "development"

    @field_validator("risk_rules_path", "log_file_path", mode="before")
    @classmethod
    def convert_to_path(cls, v):
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    @property
    def database_url(self) -> str:
        """Construct the database URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver."""
        return self.database_url.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
