"""
SOURCE handshake builder and response classifier.

Builds the legacy SOURCE request (HTTP/1.0 or ICY/1.0 dialect) sent to a
Harbor/Icecast/Shoutcast source port, and classifies whatever the server
answers into accept / reject outcomes.
"""

import base64
import logging
import re
from enum import Enum
from typing import List, Optional, Tuple

from harbor_bridge.config import BridgeConfig, Dialect
from harbor_bridge.models import Credentials, IceMetadata

logger = logging.getLogger(__name__)

# Longest response kept before giving up on finding a status line
MAX_RESPONSE_BYTES = 8192


class HandshakeOutcome(str, Enum):
    """Classification of an upstream handshake response."""

    ACCEPTED = "accepted"
    AUTH_REJECTED = "auth_rejected"
    MOUNT_REJECTED = "mount_rejected"
    UNRECOGNIZED = "unrecognized"
    INCOMPLETE = "incomplete"


_AUTH_PATTERNS = [
    re.compile(r"\b40[13]\b"),
    re.compile(r"unauthorized", re.IGNORECASE),
    re.compile(r"invalid password", re.IGNORECASE),
]
_MOUNT_PATTERN = re.compile(r"\b404\b")
_ACCEPT_PATTERN = re.compile(r"\b200\b|\bOK\b")


def _clean(value: object) -> str:
    """Header values must not break the header block."""
    return str(value).replace("\r", " ").replace("\n", " ").strip()


def _normalize_mount(mount: str) -> str:
    mount = _clean(mount)
    if not mount.startswith("/"):
        mount = f"/{mount}"
    return mount


def authorization_header(credentials: Credentials, dialect: Dialect) -> str:
    """
    Build the Authorization header value for a dialect.

    Args:
        credentials: Source credentials
        dialect: Handshake dialect

    Returns:
        Header value without the "Authorization: " prefix
    """
    if dialect == Dialect.ICY:
        password = credentials.password
        if not credentials.username or ":" in password:
            return f"source {_clean(password)}"
        return f"source {_clean(credentials.username)}:{_clean(password)}"

    token = f"{credentials.username}:{credentials.password}".encode("utf-8")
    return f"Basic {base64.b64encode(token).decode('ascii')}"


def build_source_request(
    mount: str,
    credentials: Credentials,
    content_type: str,
    metadata: IceMetadata,
    dialect: Dialect = Dialect.HTTP,
    user_agent: str = "HarborBridge/1.0",
) -> bytes:
    """
    Build a complete SOURCE request.

    Pure function: identical inputs give identical bytes. The result always
    ends with an empty line.

    Args:
        mount: Mount path (a leading slash is added if missing)
        credentials: Source credentials
        content_type: MIME type of the audio stream
        metadata: ice-* header values
        dialect: HTTP/1.0 or ICY/1.0 request line and auth style
        user_agent: User-Agent header value

    Returns:
        Request bytes terminated by CRLF CRLF
    """
    protocol = "ICY/1.0" if dialect == Dialect.ICY else "HTTP/1.0"

    headers: List[Tuple[str, str]] = [
        ("Authorization", authorization_header(credentials, dialect)),
        ("Content-Type", _clean(content_type)),
        ("User-Agent", _clean(user_agent)),
    ]

    if metadata.name:
        headers.append(("ice-name", _clean(metadata.name)))
    if metadata.description:
        headers.append(("ice-description", _clean(metadata.description)))
    if metadata.genre:
        headers.append(("ice-genre", _clean(metadata.genre)))
    if metadata.bitrate:
        headers.append(("ice-bitrate", str(int(metadata.bitrate))))
    headers.append(("ice-public", "1" if metadata.public else "0"))
    if metadata.url:
        headers.append(("ice-url", _clean(metadata.url)))

    audio_info = _audio_info(metadata)
    if audio_info:
        headers.append(("ice-audio-info", audio_info))

    lines = [f"SOURCE {_normalize_mount(mount)} {protocol}"]
    lines.extend(f"{name}: {value}" for name, value in headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _audio_info(metadata: IceMetadata) -> Optional[str]:
    if not (metadata.samplerate or metadata.channels):
        return None
    parts = []
    if metadata.samplerate:
        parts.append(f"ice-samplerate={int(metadata.samplerate)}")
    if metadata.bitrate:
        parts.append(f"ice-bitrate={int(metadata.bitrate)}")
    if metadata.channels:
        parts.append(f"ice-channels={int(metadata.channels)}")
    return ";".join(parts)


def status_line(response: bytes) -> Optional[str]:
    """Return the first complete line of a response, if one arrived."""
    end = response.find(b"\n")
    if end < 0:
        return None
    return response[:end].decode("latin-1").strip()


def classify_response(response: bytes, final: bool = False) -> HandshakeOutcome:
    """
    Classify a (possibly partial) handshake response.

    Rejections take precedence over acceptance. When ``final`` is set the
    acceptance timeout has elapsed: a partial line is judged as it stands and
    anything that is not a rejection counts as accepted, because some servers
    send nothing at all on success.

    Args:
        response: Bytes received so far
        final: Whether the acceptance timeout has elapsed

    Returns:
        HandshakeOutcome
    """
    line = status_line(response)
    partial = line is None
    if partial:
        if final:
            line = response.decode("latin-1").strip()
        elif len(response) >= MAX_RESPONSE_BYTES:
            return HandshakeOutcome.UNRECOGNIZED
        else:
            return HandshakeOutcome.INCOMPLETE

    if any(pattern.search(line) for pattern in _AUTH_PATTERNS):
        return HandshakeOutcome.AUTH_REJECTED
    if _MOUNT_PATTERN.search(line):
        return HandshakeOutcome.MOUNT_REJECTED
    if _ACCEPT_PATTERN.search(line):
        return HandshakeOutcome.ACCEPTED
    if partial:
        return HandshakeOutcome.ACCEPTED
    return HandshakeOutcome.UNRECOGNIZED


class HandshakeBuilder:
    """
    Builds SOURCE requests with the relay's configured dialect and user agent.
    """

    def __init__(self, config: BridgeConfig):
        """
        Initialize handshake builder.

        Args:
            config: Relay configuration
        """
        self.config = config

    def build(
        self,
        mount: str,
        credentials: Credentials,
        content_type: str,
        metadata: IceMetadata,
    ) -> bytes:
        """
        Build the SOURCE request for one connection attempt.

        Args:
            mount: Mount path being attempted
            credentials: Source credentials
            content_type: MIME type of the stream
            metadata: ice-* header values

        Returns:
            Request bytes
        """
        request = build_source_request(
            mount=mount,
            credentials=credentials,
            content_type=content_type,
            metadata=metadata,
            dialect=self.config.dialect,
            user_agent=self.config.user_agent,
        )
        logger.debug(f"SOURCE request for {mount} ({self.config.dialect.value} dialect)")
        return request
