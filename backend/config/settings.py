"""
Application settings and configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "Marketplace Sync API"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS settings
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Monitoring
    LOG_LEVEL: str = "info"

    # Scheduler settings
    SCHEDULER_TIMEZONE: str = "UTC"
    SCHEDULER_FIRE_QUEUE_SIZE: int = 100
    SCHEDULER_EXECUTOR_WORKERS: int = 2
    CRON_FALLBACK_MINUTES: int = 60
    CRON_MAX_YEARS_BETWEEN_MATCHES: int = 5

    # Sync execution settings
    SYNC_MAX_BATCH_SIZE: int = 50
    SYNC_BATCH_CONCURRENCY: int = 1
    SYNC_INTER_JOB_DELAY: float = 0.2
    SYNC_STAGE_TIMEOUT: float = 30.0
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BASE_DELAY: float = 2.0
    SYNC_RETRY_MAX_DELAY: float = 30.0
    SYNC_RETRY_BACKOFF_MULTIPLIER: float = 2.0
    SYNC_RETRY_JITTER: bool = True
    SYNC_DEAD_LETTER_MAX_ENTRIES: int = 1000
    SYNC_DEAD_LETTER_RETENTION_DAYS: int = 7
    DEFAULT_SYNC_TARGET: str = "shopee"

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT.lower() in ["development", "dev"]

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT.lower() in ["production", "prod"]

    def get_log_config(self) -> dict:
        """Get logging configuration based on environment."""
        level = self.LOG_LEVEL.upper()

        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
                "detailed": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(funcName)s - %(message)s",
                },
            },
            "handlers": {
                "default": {
                    "formatter": "default" if self.is_production() else "detailed",
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {
                "apscheduler": {"level": "WARNING"},
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
        }

        return config


# Create settings instance
settings = Settings()
