"""Configuration management for choretally."""

from datetime import date
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/choretally.db", description="Path to the SQLite database file")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    service_name: str = Field(default="choretally", description="Service name reported to Logfire")
    environment: str = Field(default="production", description="Deployment environment reported to Logfire")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum level of engine log records forwarded to Logfire"
    )

    # Household Statistics Configuration
    week_start_day: int = Field(
        default=0,
        ge=0,
        le=6,
        description="First day of the statistics week (0=Monday, 6=Sunday)",
    )

    # Period Finalizer Configuration
    enable_period_finalizer: bool = Field(
        default=True, description="Enable/disable the nightly lapsed-period finalizer job"
    )
    finalizer_hour: int = Field(default=2, ge=0, le=23, description="Hour of day the finalizer job runs")
    finalizer_minute: int = Field(default=0, ge=0, le=59, description="Minute of hour the finalizer job runs")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # Period bounds for tasks with no counting period
    ALL_TIME_START: date = date(1970, 1, 1)
    ALL_TIME_END: date = date(2100, 12, 31)

    # Recurrence
    DEFAULT_WEEKDAYS: tuple[int, ...] = (1, 2, 3, 4, 5)  # Mon-Fri (0=Sunday, 6=Saturday)
    WEEKDAY_SCAN_DAYS: int = 7

    # Actor recorded on automatic finalizations
    SYSTEM_ACTOR: str = "system"

    # Habit tracker display
    RECENT_PERIODS_LIMIT: int = 15

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries
    MAX_PER_PAGE_LIMIT: int = 10000  # Upper bound for "fetch everything" queries

    # Scheduler retry
    JOB_MAX_RETRIES: int = 3
    JOB_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
