"""
Configuration and settings for the relay service.

Field names map to environment variables case-insensitively (`port` reads
`PORT`, `agora_app_id` reads `AGORA_APP_ID`, ...).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PERSPECTIVE_ANALYZE_URL = (
    "https://commentanalyzer.googleapis.com/v1alpha1/comments:analyze"
)


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    port: int = 3000
    log_level: str = "INFO"

    # Firebase. Either inline service-account JSON or a path to the key file.
    google_application_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None

    # Agora RTC
    agora_app_id: Optional[str] = None
    agora_app_certificate: Optional[str] = None
    agora_token_expire_seconds: int = Field(default=3600, gt=0)

    # Moderation
    vision_api_key: Optional[str] = None
    perspective_api_key: Optional[str] = None
    perspective_url: str = PERSPECTIVE_ANALYZE_URL
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="RELAY_USE_IN_MEMORY_BACKENDS"
    )

    # Scheduled maintenance
    scheduler_enabled: bool = Field(default=True, alias="RELAY_SCHEDULER_ENABLED")
    points_interval_seconds: float = Field(default=3600, gt=0)
    suspension_interval_seconds: float = Field(default=300, gt=0)
    badge_interval_seconds: float = Field(default=3600, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
