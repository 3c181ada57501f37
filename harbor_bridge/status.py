"""
Status events emitted by a session and their producer-facing messages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List


class StatusKind(str, Enum):
    """Session status events."""

    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    CONNECTED = "connected"
    PROGRESS = "progress"
    MOUNT_REJECTED = "mount-rejected"
    MOUNT_EXHAUSTED = "mount-exhausted"
    AUTH_FAILED = "auth-failed"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    BACKOFF_EXCEEDED = "backoff-exceeded"
    STOPPED = "stopped"


TERMINAL_FAILURES = {
    StatusKind.MOUNT_EXHAUSTED,
    StatusKind.AUTH_FAILED,
    StatusKind.BACKOFF_EXCEEDED,
}


@dataclass
class StatusEvent:
    """One session status change."""

    kind: StatusKind
    session_id: str
    mount: str = ""
    bytes_forwarded: int = 0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)


def _stream_status(event: StatusEvent, status: str, **extra: Any) -> Dict[str, Any]:
    message = {
        "type": "stream-status",
        "status": status,
        "bytesTransferred": event.bytes_forwarded,
        "mount": event.mount,
    }
    message.update(extra)
    return message


def to_producer_messages(event: StatusEvent) -> List[Dict[str, Any]]:
    """
    Translate a status event into the notifications sent to the producer.

    Args:
        event: Session status event

    Returns:
        List of JSON-serializable messages (possibly empty)
    """
    kind = event.kind

    if kind == StatusKind.CONNECTED:
        messages = []
        if not event.details.get("reconnected"):
            messages.append({"type": "stream-bridge-ready", "success": True, "mount": event.mount})
        messages.append(_stream_status(event, "streaming"))
        return messages

    if kind == StatusKind.PROGRESS:
        return [_stream_status(event, "streaming")]

    if kind in (StatusKind.CONNECTING, StatusKind.HANDSHAKING, StatusKind.DISCONNECTED):
        return [_stream_status(event, kind.value)]

    if kind == StatusKind.MOUNT_REJECTED:
        return [_stream_status(event, kind.value, message=event.message)]

    if kind == StatusKind.RECONNECTING:
        return [
            _stream_status(
                event,
                kind.value,
                attempt=event.details.get("attempt"),
                delay=event.details.get("delay"),
            )
        ]

    if kind == StatusKind.STOPPED:
        return [{"type": "stream-stopped", "bytesTransferred": event.bytes_forwarded}]

    messages: List[Dict[str, Any]] = []
    if kind == StatusKind.AUTH_FAILED:
        messages.append({"type": "auth_error", "message": event.message})
    elif kind == StatusKind.MOUNT_EXHAUSTED:
        messages.append(
            {
                "type": "mount-exhausted",
                "message": event.message,
                "triedMounts": event.details.get("tried", []),
            }
        )
    elif kind == StatusKind.BACKOFF_EXCEEDED:
        messages.append(
            {"type": "stream-error", "error": kind.value, "message": event.message}
        )

    # Terminal failure before the stream ever came up answers the start-stream
    if not event.details.get("was_streaming"):
        messages.append({"type": "stream-bridge-ready", "success": False, "mount": event.mount})
    return messages
