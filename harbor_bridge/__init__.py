"""
Harbor Bridge

Relays a live audio stream from a browser mixing client to an
Icecast/Shoutcast-family SOURCE endpoint ("harbor"), handling the
SOURCE/ICY handshake, mount fallback, reconnection and buffering.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Harbor Bridge Project"

from harbor_bridge.backoff import BackoffPolicy
from harbor_bridge.config import BridgeConfig, Dialect, DuplicatePolicy
from harbor_bridge.errors import (
    AlreadyStreaming,
    AuthenticationError,
    BackoffExceeded,
    BridgeError,
    ConnectError,
    MountsExhausted,
    MountUnavailable,
    ProtocolError,
    UpstreamWriteError,
)
from harbor_bridge.flow_controller import FlowController
from harbor_bridge.handshake import (
    HandshakeBuilder,
    HandshakeOutcome,
    build_source_request,
    classify_response,
)
from harbor_bridge.metadata import MetadataUpdater
from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.models import Credentials, IceMetadata, StreamParameters
from harbor_bridge.mounts import MountResolver
from harbor_bridge.registry import SessionRegistry
from harbor_bridge.session import RejectReason, RelaySession, SessionState
from harbor_bridge.upstream import UpstreamConnection

__all__ = [
    "AlreadyStreaming",
    "AuthenticationError",
    "BackoffExceeded",
    "BackoffPolicy",
    "BridgeConfig",
    "BridgeError",
    "BridgeMetrics",
    "ConnectError",
    "Credentials",
    "Dialect",
    "DuplicatePolicy",
    "FlowController",
    "HandshakeBuilder",
    "HandshakeOutcome",
    "IceMetadata",
    "MetadataUpdater",
    "MountResolver",
    "MountsExhausted",
    "MountUnavailable",
    "ProtocolError",
    "RejectReason",
    "RelaySession",
    "SessionRegistry",
    "SessionState",
    "StreamParameters",
    "UpstreamConnection",
    "UpstreamWriteError",
    "build_source_request",
    "classify_response",
]
