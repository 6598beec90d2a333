"""Configuration management for cohortsync."""

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

    # Document store
    sqlite_db_path: str = Field(default="data/cohortsync.db", description="SQLite database file path")

    # Redis Configuration (optional, enables cross-process change fan-out)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")
    change_feed_channel_prefix: str = Field(
        default="cohortsync:changes:", description="Redis pub/sub channel prefix for change notifications"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    app_env: str = Field(default="development", description="Deployment environment reported to Logfire")

    # Share links
    app_origin: str = Field(default="http://localhost:3000", description="Public origin used to build join links")

    # Countdown display
    countdown_refresh_seconds: float = Field(
        default=60.0, description="Interval between recomputations of the time-left display"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # Cohort limits
    MAX_COHORT_NAME_LENGTH: int = 100
    MAX_COHORT_GOAL_LENGTH: int = 500

    # Display name used when an identity has none
    ANONYMOUS_DISPLAY_NAME: str = "Anonymous"

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool
    REDIS_PUBLISH_MAX_RETRIES: int = 3


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
