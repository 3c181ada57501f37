"""Immutable session parameters supplied by the producer at start-stream."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from harbor_bridge.config import BridgeConfig


@dataclass(frozen=True)
class Credentials:
    """Source credentials, fixed for the lifetime of a session."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class IceMetadata:
    """Stream description sent as ice-* headers."""

    name: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[str] = None
    bitrate: Optional[int] = None
    public: bool = False
    url: Optional[str] = None
    samplerate: Optional[int] = None
    channels: Optional[int] = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "IceMetadata":
        """Defaults taken from the relay configuration."""
        return cls(
            name=config.stream_name,
            description=config.stream_description,
            genre=config.stream_genre,
            bitrate=config.stream_bitrate or None,
            public=config.stream_public,
        )


@dataclass(frozen=True)
class StreamParameters:
    """Everything a session needs to talk to the upstream server."""

    credentials: Credentials
    content_type: str = "audio/mpeg"
    ice_metadata: IceMetadata = field(default_factory=IceMetadata)
    # Producer-requested mount, tried before the configured candidates
    mount: Optional[str] = None

    def mount_candidates(self, configured: Tuple[str, ...]) -> Tuple[str, ...]:
        """Requested mount first, then the configured list."""
        if self.mount:
            return (self.mount,) + tuple(configured)
        return tuple(configured)
