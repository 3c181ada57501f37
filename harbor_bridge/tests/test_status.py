"""Tests for producer-facing status messages."""

from harbor_bridge.status import StatusEvent, StatusKind, to_producer_messages


def _event(kind: StatusKind, message: str = "", **details) -> StatusEvent:
    return StatusEvent(
        kind=kind,
        session_id="producer-1",
        mount="/live",
        bytes_forwarded=4096,
        message=message,
        details=details,
    )


class TestProducerMessages:
    """Test status event translation."""

    def test_first_connect(self):
        messages = to_producer_messages(_event(StatusKind.CONNECTED))

        assert messages[0] == {"type": "stream-bridge-ready", "success": True, "mount": "/live"}
        assert messages[1]["type"] == "stream-status"
        assert messages[1]["status"] == "streaming"
        assert messages[1]["bytesTransferred"] == 4096

    def test_reconnect_skips_ready(self):
        messages = to_producer_messages(_event(StatusKind.CONNECTED, reconnected=True))
        assert [m["type"] for m in messages] == ["stream-status"]

    def test_reconnecting(self):
        messages = to_producer_messages(
            _event(StatusKind.RECONNECTING, "reset", attempt=2, delay=4.0)
        )
        assert messages == [
            {
                "type": "stream-status",
                "status": "reconnecting",
                "bytesTransferred": 4096,
                "mount": "/live",
                "attempt": 2,
                "delay": 4.0,
            }
        ]

    def test_auth_failed_before_streaming(self):
        messages = to_producer_messages(_event(StatusKind.AUTH_FAILED, "Authentication failed"))

        assert messages[0] == {"type": "auth_error", "message": "Authentication failed"}
        assert messages[1]["type"] == "stream-bridge-ready"
        assert messages[1]["success"] is False

    def test_mount_exhausted(self):
        messages = to_producer_messages(
            _event(StatusKind.MOUNT_EXHAUSTED, "All mount points failed", tried=["/", "/live"])
        )
        assert messages[0]["type"] == "mount-exhausted"
        assert messages[0]["triedMounts"] == ["/", "/live"]

    def test_backoff_exceeded_after_streaming(self):
        """Test a give-up after streaming does not send a second ready message."""
        messages = to_producer_messages(
            _event(StatusKind.BACKOFF_EXCEEDED, "Gave up", was_streaming=True)
        )
        assert messages == [{"type": "stream-error", "error": "backoff-exceeded", "message": "Gave up"}]

    def test_stopped(self):
        messages = to_producer_messages(_event(StatusKind.STOPPED))
        assert messages == [{"type": "stream-stopped", "bytesTransferred": 4096}]
