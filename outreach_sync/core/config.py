"""
Configuration settings for the Outreach Sync service.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service
    service_name: str = "outreach-sync"
    environment: str = "development"  # development, staging, production
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8002

    # Database (PostgreSQL)
    database_url: str = "postgresql://localhost:5432/outreach"
    database_pool_size: int = 10

    # Logging
    log_level: str = "INFO"

    # Unipile (LinkedIn automation provider)
    unipile_api_url: str = "https://api6.unipile.com:13443/api/v1"
    unipile_api_key: str = ""
    unipile_timeout_seconds: float = 30.0

    # Peak window gating for autonomous syncs (local hours, [start, end))
    peak_gating_enabled: bool = True
    peak_start_hour: int = Field(9, ge=0, le=23)
    peak_end_hour: int = Field(17, ge=0, le=24)
    peak_deferral_hours: int = Field(8, ge=1)
    # IANA zone name for the peak window; system local time when unset
    peak_timezone: Optional[str] = None

    # Phase scheduling
    phase_active_delay_seconds: int = 5
    phase_important_delay_seconds: int = 15
    batch_spacing_seconds: int = 10

    # Background jobs
    job_timeout_seconds: int = 20 * 60
    shutdown_timeout_seconds: int = 30

    # Status surface
    status_history_limit: int = 5

    # CORS (comma-separated list of allowed origins)
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into list."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
