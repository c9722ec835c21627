"""
FeedBar Configuration System
============================

Configuration management with environment variables and Pydantic models.
Environment variables (``FEEDBAR_`` prefix, ``__`` for nesting) override
Field defaults, e.g. ``FEEDBAR_INGESTION__BATCH_SIZE=20``.
"""

from pathlib import Path
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 FeedBar/1.0 (+https://feedbar.app)"
)


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class IngestionSettings(BaseModel):
    """Batch ingestion configuration."""
    batch_size: int = Field(default=10, ge=1, le=100, description="Feeds processed per batch run")
    fetch_timeout: float = Field(default=5.0, gt=0, le=60, description="Feed document fetch timeout in seconds")
    feed_task_timeout: float = Field(default=60.0, gt=0, le=600, description="Overall budget for one feed's processing in seconds")
    image_scrape_timeout: float = Field(default=3.0, gt=0, le=30, description="Article page scrape timeout in seconds")
    image_scrape_concurrency: int = Field(default=4, ge=1, le=20, description="Concurrent page scrapes per feed")
    summary_max_length: int = Field(default=200, ge=50, le=2000, description="Max plain-text summary length")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent sent to feeds and article pages")
    interval_minutes: int = Field(default=10, ge=1, le=1440, description="Minutes between batch runs")

    @field_validator('user_agent')
    @classmethod
    def validate_user_agent(cls, v):
        """Several sources reject empty user agents."""
        if not v or not v.strip():
            raise ValueError("user_agent must not be empty")
        return v.strip()


class RetentionSettings(BaseModel):
    """Item retention configuration."""
    days: int = Field(default=3, ge=1, le=30, description="Days to keep items after publication")


class IconSettings(BaseModel):
    """Feed icon backfill configuration."""
    timeout: float = Field(default=5.0, gt=0, le=60, description="Site page fetch timeout in seconds")
    concurrency: int = Field(default=5, ge=1, le=20, description="Concurrent icon lookups")
    interval_minutes: int = Field(default=60, ge=1, le=10080, description="Minutes between icon backfill runs")


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/feedbar.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/feedbar.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class LeaseSettings(BaseModel):
    """Run lease preventing overlapping batch runs."""
    enabled: bool = Field(default=True, description="Guard batch runs with a file lease")
    lock_dir: Optional[str] = Field(default=None, description="Directory for lease files (system temp if unset)")
    name: str = Field(default="feedbar-ingest", min_length=1, description="Lease file name")


class FeedBarSettings(BaseSettings):
    """Main application settings."""

    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    icons: IconSettings = Field(default_factory=IconSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    lease: LeaseSettings = Field(default_factory=LeaseSettings)

    app_name: str = Field(default="FeedBar", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "FEEDBAR_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> None:
        """Validate filesystem-dependent parts of the configuration."""
        errors = []

        if self.database.path != ":memory:":
            try:
                db_path = Path(self.database.path)
                db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid database path: {e}")

        if self.logging.file_path:
            try:
                log_path = Path(self.logging.file_path)
                log_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if self.ingestion.feed_task_timeout < self.ingestion.fetch_timeout:
            errors.append("ingestion.feed_task_timeout must be >= ingestion.fetch_timeout")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID
            )

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings() -> FeedBarSettings:
    """Load settings from environment variables and defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = FeedBarSettings()
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID
        ) from e


_settings: Optional[FeedBarSettings] = None


def get_settings(reload: bool = False) -> FeedBarSettings:
    """Get global settings instance.

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings
