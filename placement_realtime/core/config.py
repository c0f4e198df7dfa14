"""
Configuration management for the placement realtime layer.

Uses pydantic-settings to load configuration from environment variables
with sensible defaults for development.
"""

import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Placement Realtime"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # API
    API_V1_PREFIX: str = "/api/v1"

    # ==========================================================================
    # Change Feed Configuration
    # Every filter is registered against one database schema
    # ==========================================================================

    REALTIME_SCHEMA: str = "public"
    REALTIME_CHANNEL_PREFIX: str = ""  # Prepended to derived channel names

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True  # Plain text output when False (pytest, local dev)

    # ==========================================================================
    # OpenTelemetry Configuration
    # Tracing is fail-open: spans are dropped when the collector is down
    # ==========================================================================

    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "placement-realtime"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://tempo:4317"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case the level name and reject unknown levels."""
        level = str(v).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
