"""
Relay configuration.

Upstream target, handshake dialect, mount candidates, timing and buffering
settings, all overridable through HARBOR_* environment variables.
"""

from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MOUNT_POINTS = ["/", "/stream", "/live", "/radio.mp3"]


class Dialect(str, Enum):
    """SOURCE request flavours spoken by upstream servers."""

    # SOURCE <mount> HTTP/1.0 with Basic auth (Icecast, Liquidsoap harbor)
    HTTP = "http"
    # SOURCE <mount> ICY/1.0 with "Authorization: source ..." (Shoutcast style)
    ICY = "icy"


class DuplicatePolicy(str, Enum):
    """What a second start-stream for a live producer does."""

    REJECT = "reject"
    REPLACE = "replace"


class BridgeConfig(BaseSettings):
    """Harbor relay configuration from environment variables."""

    # Upstream target
    host: str = Field(
        default="localhost",
        description="Broadcast server host",
    )

    port: int = Field(
        default=8005,
        description="Broadcast server SOURCE port",
        ge=1,
        le=65535,
    )

    mount_points: List[str] = Field(
        default_factory=lambda: list(DEFAULT_MOUNT_POINTS),
        description="Ordered mount candidates (JSON list in the environment)",
    )

    dialect: Dialect = Field(
        default=Dialect.HTTP,
        description="Handshake dialect: http (Basic auth) or icy (source auth)",
    )

    user_agent: str = Field(
        default="HarborBridge/1.0",
        description="User-Agent header sent in the SOURCE request",
    )

    # Used when a producer's start-stream carries no credentials
    source_username: str = Field(default="source", description="Default source user")
    source_password: Optional[str] = Field(default=None, description="Default source password")

    # Timing
    connect_timeout: float = Field(
        default=10.0,
        description="TCP connect timeout (seconds)",
        gt=0.0,
    )

    acceptance_timeout: float = Field(
        default=1.0,
        description="Silence after the SOURCE request that counts as acceptance (seconds)",
        ge=0.0,
        le=30.0,
    )

    mount_retry_delay: float = Field(
        default=1.0,
        description="Pause before trying the next mount after a 404 (seconds)",
        ge=0.0,
    )

    backoff_base: float = Field(
        default=1.0,
        description="First reconnect delay (seconds)",
        ge=0.0,
    )

    backoff_multiplier: float = Field(
        default=2.0,
        description="Growth factor between consecutive reconnect delays",
        ge=1.0,
    )

    backoff_cap: float = Field(
        default=30.0,
        description="Upper bound for a single reconnect delay (seconds)",
        ge=0.0,
    )

    max_retry_attempts: int = Field(
        default=5,
        description="Reconnect attempts before the session gives up",
        ge=0,
        le=100,
    )

    status_interval: float = Field(
        default=5.0,
        description="Interval between stream-status progress notifications (seconds)",
        gt=0.0,
    )

    stop_timeout: float = Field(
        default=5.0,
        description="Grace period for an in-flight write on stop (seconds)",
        gt=0.0,
    )

    # Buffering
    queue_max_chunks: int = Field(
        default=64,
        description="Maximum audio chunks held while the upstream is not writable",
        ge=1,
        le=65536,
    )

    queue_max_bytes: int = Field(
        default=0,
        description="Maximum buffered bytes (0 disables the byte cap)",
        ge=0,
    )

    # Sessions
    duplicate_policy: DuplicatePolicy = Field(
        default=DuplicatePolicy.REJECT,
        description="Handling of a second start-stream from the same producer",
    )

    metadata_updates: bool = Field(
        default=True,
        description="Forward title/artist updates to the admin metadata endpoint",
    )

    # Default ICE metadata
    stream_name: str = Field(default="Live Stream", description="ice-name")
    stream_description: str = Field(default="Live broadcast", description="ice-description")
    stream_genre: str = Field(default="Various", description="ice-genre")
    stream_bitrate: int = Field(default=128, description="ice-bitrate (kbit/s)", ge=0)
    stream_public: bool = Field(default=False, description="ice-public")

    model_config = SettingsConfigDict(
        env_prefix="HARBOR_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("mount_points")
    @classmethod
    def _mounts_not_empty(cls, value: List[str]) -> List[str]:
        cleaned = [mount.strip() for mount in value if mount and mount.strip()]
        if not cleaned:
            raise ValueError("mount_points must contain at least one mount")
        return cleaned

    @property
    def target(self) -> str:
        """host:port of the upstream server."""
        return f"{self.host}:{self.port}"


def get_config() -> BridgeConfig:
    """
    Get relay configuration from environment variables.

    Returns:
        BridgeConfig: Configuration instance
    """
    return BridgeConfig()
