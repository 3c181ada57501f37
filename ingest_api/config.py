"""Configuration management for the ingest API."""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from INGEST_* environment variables."""

    # Application
    app_name: str = "Harbor Ingest API"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # WebSocket
    subprotocol: str = "webcast"
    max_frame_bytes: int = Field(
        default=1024 * 1024,
        description="Binary frames larger than this are dropped",
        ge=1,
    )

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None
    log_file_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_file_backup_count: int = 5

    # Metadata forwarding HTTP timeout (seconds)
    metadata_timeout: float = Field(default=5.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_prefix="INGEST_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> Settings:
    """
    Get ingest API settings from environment variables.

    Returns:
        Settings: Configuration instance
    """
    return Settings()
