"""
Error taxonomy for the Harbor relay.

Retryable errors are handled inside the session and only surface to the
producer as transient status updates. Terminal errors end the session.
"""

from typing import List, Optional


class BridgeError(Exception):
    """Base class for all relay errors."""

    retryable: bool = False
    code: str = "bridge-error"


class ConnectError(BridgeError):
    """Socket-level failure while connecting or before streaming started."""

    retryable = True
    code = "connect-error"


class ProtocolError(BridgeError):
    """Malformed or unrecognized handshake response."""

    retryable = True
    code = "protocol-error"

    def __init__(self, message: str, response: bytes = b""):
        super().__init__(message)
        self.response = response


class UpstreamWriteError(BridgeError):
    """Writing audio to the upstream socket failed."""

    retryable = True
    code = "write-error"


class AuthenticationError(BridgeError):
    """Upstream answered 401/403. Never retried."""

    code = "auth-failed"

    def __init__(self, message: str, response: bytes = b""):
        super().__init__(message)
        self.response = response


class MountUnavailable(BridgeError):
    """Upstream answered 404 for the attempted mount."""

    retryable = True
    code = "mount-unavailable"

    def __init__(self, mount: str, response: bytes = b""):
        super().__init__(f"Mount point {mount} not available")
        self.mount = mount
        self.response = response


class MountsExhausted(BridgeError):
    """Every configured mount candidate was rejected."""

    code = "mount-exhausted"

    def __init__(self, tried: Optional[List[str]] = None):
        tried = tried or []
        super().__init__(f"All mount points failed: {', '.join(tried)}")
        self.tried = tried


class BackoffExceeded(BridgeError):
    """Retry budget used up."""

    code = "backoff-exceeded"

    def __init__(self, attempts: int):
        super().__init__(f"Gave up after {attempts} reconnect attempts")
        self.attempts = attempts


class AlreadyStreaming(BridgeError):
    """A live session already exists for this producer identity."""

    code = "already-streaming"

    def __init__(self, producer_id: str):
        super().__init__(f"Producer {producer_id} is already streaming")
        self.producer_id = producer_id
