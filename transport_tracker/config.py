"""Application configuration management."""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote spreadsheet endpoint (Apps Script web app)
    remote_api_url: str = ""
    request_timeout: float = 10.0

    # Fetch retry policy: 2 retries, 1s base delay, x1.5 backoff
    fetch_retries: int = 2
    retry_base_delay: float = 1.0
    retry_multiplier: float = 1.5

    # Refresh loop
    sync_interval_ticks: int = 5
    tick_seconds: float = 1.0

    # Local cache
    cache_dir: str = ".cache/transport_tracker"

    # Telegram Bot (optional surface)
    telegram_bot_token: Optional[str] = None

    # Google Cloud Platform - Vertex AI (optional, for insights)
    gcp_project_id: Optional[str] = None
    gcp_location: str = "us-central1"

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8080

    # Webhook (for production)
    webhook_url: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def cache_path(self) -> Path:
        """Get Path object for the cache directory."""
        return Path(self.cache_dir)

    @property
    def insights_enabled(self) -> bool:
        """Vertex AI insights need a GCP project."""
        return bool(self.gcp_project_id)


# Global settings instance
settings = Settings()
