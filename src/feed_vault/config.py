# ABOUTME: Centralized configuration using Pydantic Settings.
# ABOUTME: Loads all settings from environment variables and .env file.

from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: Path = Path("./feed_vault.db")

    # Image storage
    storage_dir: Path = Path("./storage/images")
    image_url_prefix: str = "/api/storage/images"

    # Network
    user_agent: str = "Mozilla/5.0 (compatible; RSS Reader Bot)"
    feed_timeout: float = 10
    article_timeout: float = 15
    image_timeout: float = 10

    # Archival
    archive_delay: float = 1.0
    min_content_length: int = 100
    retention_days: int = 7

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Logging
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """Build async SQLite connection URL."""
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
