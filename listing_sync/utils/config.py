"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Durable store
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "listing_sync_dev.db"
    SQL_DEBUG: bool = False

    # Push channel for listing row changes
    REDIS_URL: str = "redis://localhost:6379/0"
    CHANNEL_PREFIX: str = "listing_sync"

    # External SEO worker
    WORKER_WEBHOOK_URL: str = "http://localhost:5678/webhook/seo"
    WORKER_WEBHOOK_SECRET: Optional[str] = None
    WORKER_TIMEOUT: float = 30.0

    # Completion detection
    POLL_INTERVAL_SECONDS: float = 5.0
    COMPLETION_STATUS: str = "seo_done"

    # Application Settings
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
