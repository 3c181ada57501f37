"""
Relay session: one producer, one upstream connection.

A single worker task per session owns the connection, the mount resolver,
the backoff policy and the flow controller. Producer calls only enqueue
audio and wake the worker, so socket writes never interleave and no locking
is needed.

State machine:

    IDLE -> CONNECTING -> HANDSHAKING -> STREAMING
    HANDSHAKING -> REJECTED(mount) -> CONNECTING (next mount)
    HANDSHAKING -> REJECTED(auth | mounts_exhausted)          terminal
    any -> RETRYING -> CONNECTING                              (backoff)
    RETRYING -> REJECTED(exhausted)                            terminal
    any -> CLOSED                                              (stop)
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from harbor_bridge.backoff import BackoffPolicy
from harbor_bridge.config import BridgeConfig
from harbor_bridge.errors import (
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
from harbor_bridge.handshake import HandshakeBuilder
from harbor_bridge.metadata import MetadataUpdater
from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.models import StreamParameters
from harbor_bridge.mounts import MountResolver
from harbor_bridge.status import StatusEvent, StatusKind, to_producer_messages
from harbor_bridge.upstream import UpstreamConnection

logger = logging.getLogger(__name__)

Notifier = Callable[[Dict[str, Any]], Awaitable[None]]


class SessionState(str, Enum):
    """Relay session states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    STREAMING = "streaming"
    RETRYING = "retrying"
    REJECTED = "rejected"
    CLOSED = "closed"


class RejectReason(str, Enum):
    """Why a session was rejected."""

    AUTH = "auth"
    MOUNT = "mount"
    MOUNTS_EXHAUSTED = "mounts_exhausted"
    EXHAUSTED = "exhausted"


_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING, SessionState.CLOSED},
    SessionState.CONNECTING: {
        SessionState.HANDSHAKING,
        SessionState.RETRYING,
        SessionState.REJECTED,
        SessionState.CLOSED,
    },
    SessionState.HANDSHAKING: {
        SessionState.STREAMING,
        SessionState.RETRYING,
        SessionState.REJECTED,
        SessionState.CLOSED,
    },
    SessionState.STREAMING: {
        SessionState.RETRYING,
        SessionState.REJECTED,
        SessionState.CLOSED,
    },
    SessionState.RETRYING: {
        SessionState.CONNECTING,
        SessionState.REJECTED,
        SessionState.CLOSED,
    },
    # Only a plain mount rejection may move on
    SessionState.REJECTED: {SessionState.CONNECTING, SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class RelaySession:
    """
    Relays one producer's audio to the upstream server.

    Features:
    - SOURCE handshake with accept-on-silence
    - Mount fallback on 404, terminal stop on 401/403
    - Exponential reconnect backoff, resuming on the current mount
    - Drop-oldest buffering while the upstream is not writable
    """

    def __init__(
        self,
        session_id: str,
        params: StreamParameters,
        config: Optional[BridgeConfig] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[BridgeMetrics] = None,
        metadata_updater: Optional[MetadataUpdater] = None,
        on_finished: Optional[Callable[["RelaySession"], None]] = None,
    ):
        """
        Initialize relay session.

        Args:
            session_id: Opaque identifier (one per producer connection)
            params: Credentials, content type and ICE metadata
            config: Relay configuration (creates default if not provided)
            notifier: Coroutine receiving producer-facing status messages
            metrics: Prometheus metrics (optional)
            metadata_updater: Now-playing forwarder (optional)
            on_finished: Called once when the worker has ended
        """
        if config is None:
            from harbor_bridge.config import get_config

            config = get_config()

        self.id = session_id
        self.config = config
        self.params = params

        self.mounts = MountResolver(params.mount_candidates(tuple(config.mount_points)))
        self.backoff = BackoffPolicy.from_config(config)
        self.flow = FlowController.from_config(config)
        self.builder = HandshakeBuilder(config)

        self.state = SessionState.IDLE
        self.reject_reason: Optional[RejectReason] = None
        self.bytes_forwarded = 0
        self.last_activity_time: Optional[datetime] = None
        self.retry_count = 0
        self.next_retry_at: Optional[datetime] = None
        self.connect_attempts = 0
        self.started_at = datetime.now()
        self.history: Deque[StatusEvent] = deque(maxlen=100)

        self._notifier = notifier
        self._metrics = metrics
        self._metadata_updater = metadata_updater
        self._on_finished = on_finished

        self._connection: Optional[UpstreamConnection] = None
        self._task: Optional[asyncio.Task] = None
        self._metadata_tasks: Set[asyncio.Task] = set()
        self._wake = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._stop_requested = False
        self._has_streamed = False
        self._torn_down = False
        self._last_progress = 0.0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def credentials(self):
        return self.params.credentials

    @property
    def content_type(self) -> str:
        return self.params.content_type

    @property
    def ice_metadata(self):
        return self.params.ice_metadata

    @property
    def mount_index(self) -> int:
        return self.mounts.index

    @property
    def current_mount(self) -> str:
        return self.mounts.current()

    @property
    def is_terminal(self) -> bool:
        if self.state == SessionState.CLOSED:
            return True
        return self.state == SessionState.REJECTED and self.reject_reason != RejectReason.MOUNT

    @property
    def is_finished(self) -> bool:
        if self._task is not None:
            return self._task.done()
        return self.is_terminal

    @property
    def connection(self) -> Optional[UpstreamConnection]:
        return self._connection

    # ------------------------------------------------------------------
    # Producer-facing API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the session worker."""
        if self._task is not None:
            raise RuntimeError(f"Session {self.id} already started")
        logger.info(
            f"Starting relay session {self.id} -> {self.config.target} "
            f"(mounts: {', '.join(self.mounts.candidates)})"
        )
        self._task = asyncio.create_task(self._run(), name=f"relay-session-{self.id}")

    def push_audio(self, chunk: bytes) -> bool:
        """
        Hand one audio frame to the session. Never blocks.

        Args:
            chunk: Encoded audio bytes (one producer frame)

        Returns:
            False if the session has already ended and the chunk was ignored
        """
        if self.is_finished or self._stop_requested:
            return False
        if not chunk:
            return True

        evicted = self.flow.enqueue(bytes(chunk))
        if evicted and self._metrics is not None:
            self._metrics.record_evictions(evicted)

        self.last_activity_time = datetime.now()
        if self.state == SessionState.STREAMING:
            self._wake.set()
        return True

    def update_metadata(self, title: Optional[str], artist: Optional[str] = None) -> bool:
        """
        Forward now-playing metadata, best effort.

        Returns:
            True if an update was dispatched
        """
        if not self.config.metadata_updates or self._metadata_updater is None:
            logger.debug(f"Session {self.id}: metadata forwarding disabled")
            return False
        if self.state != SessionState.STREAMING:
            logger.debug(f"Session {self.id}: metadata ignored while {self.state.value}")
            return False

        task = asyncio.create_task(
            self._metadata_updater.update(self.current_mount, self.credentials, title, artist)
        )
        self._metadata_tasks.add(task)
        task.add_done_callback(self._metadata_tasks.discard)
        return True

    async def stop(self) -> None:
        """
        Stop the session.

        Pending connects and backoff timers are cancelled at once. An
        in-flight write gets up to ``stop_timeout`` seconds to finish. No
        queued audio is flushed afterwards.
        """
        if self._task is None:
            if not self.is_terminal:
                self._transition(SessionState.CLOSED)
                await self._emit(StatusKind.STOPPED)
            return
        if self._task.done():
            return

        logger.info(f"Stopping relay session {self.id} (state: {self.state.value})")
        self._stop_requested = True
        self._stop_event.set()
        self._wake.set()

        if self.state == SessionState.STREAMING:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.config.stop_timeout)
                return
            except asyncio.TimeoutError:
                logger.warning(f"Session {self.id}: in-flight write did not finish, cancelling")

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        # A worker cancelled before its first step never ran its cleanup
        await self._teardown()

    async def wait_finished(self) -> None:
        """Wait for the worker to end."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._loop()
        except asyncio.CancelledError:
            logger.info(f"Session {self.id} worker cancelled")
        except Exception as e:
            logger.error(f"Session {self.id} failed unexpectedly: {e}", exc_info=True)
            await self._notify(
                {"type": "stream-error", "error": "internal-error", "message": str(e)}
            )
        finally:
            await self._teardown()

    async def _loop(self) -> None:
        while not self._stop_requested:
            try:
                await self._attempt()
                return

            except AuthenticationError as e:
                await self._close_connection()
                self._record_handshake("auth_rejected")
                await self._fail(RejectReason.AUTH, StatusKind.AUTH_FAILED, str(e))
                return

            except MountUnavailable as e:
                await self._close_connection()
                self._record_handshake("mount_rejected")
                try:
                    self.mounts.advance()
                except MountsExhausted as exhausted:
                    await self._fail(
                        RejectReason.MOUNTS_EXHAUSTED,
                        StatusKind.MOUNT_EXHAUSTED,
                        str(exhausted),
                        tried=exhausted.tried,
                    )
                    return

                self._transition(SessionState.REJECTED, RejectReason.MOUNT)
                await self._emit(StatusKind.MOUNT_REJECTED, message=str(e), mount=e.mount)
                await self._sleep(self.config.mount_retry_delay)

            except (ConnectError, ProtocolError, UpstreamWriteError) as e:
                await self._close_connection()
                if isinstance(e, ProtocolError):
                    self._record_handshake("unrecognized")
                if self._stop_requested:
                    return
                if not await self._schedule_retry(e):
                    return

    async def _attempt(self) -> None:
        """Connect, handshake and stream until the connection is lost or stop."""
        mount = self.current_mount
        self._transition(SessionState.CONNECTING)
        await self._emit(StatusKind.CONNECTING)

        connection = UpstreamConnection(
            self.config.host,
            self.config.port,
            connect_timeout=self.config.connect_timeout,
            on_lost=self._wake.set,
        )
        self._connection = connection
        self.connect_attempts += 1
        await connection.open()

        self._transition(SessionState.HANDSHAKING)
        await self._emit(StatusKind.HANDSHAKING)

        request = self.builder.build(
            mount, self.credentials, self.content_type, self.ice_metadata
        )
        await connection.handshake(request, mount, self.config.acceptance_timeout)
        self._record_handshake(
            "accepted_by_timeout" if connection.accepted_by_timeout else "accepted"
        )

        self._transition(SessionState.STREAMING)
        self.backoff.reset()
        self.retry_count = 0
        connection.start_watch()

        reconnected = self._has_streamed
        self._has_streamed = True
        logger.info(f"Session {self.id} streaming on {self.config.target}{mount}")
        await self._emit(StatusKind.CONNECTED, reconnected=reconnected)

        await self._stream(connection)

    async def _stream(self, connection: UpstreamConnection) -> None:
        loop = asyncio.get_running_loop()
        self._last_progress = loop.time()
        self._wake.set()

        while True:
            await self._wake.wait()
            self._wake.clear()

            if self._stop_requested:
                return
            if connection.lost:
                raise ConnectError("Upstream closed the connection")

            written = await self.flow.drain(
                connection.write, should_stop=lambda: self._stop_requested
            )
            if written:
                self.bytes_forwarded += written
                if self._metrics is not None:
                    self._metrics.record_forwarded(written)

            if loop.time() - self._last_progress >= self.config.status_interval:
                self._last_progress = loop.time()
                await self._emit(StatusKind.PROGRESS)

    async def _schedule_retry(self, error: BridgeError) -> bool:
        """Back off before reconnecting. Returns False once the budget is spent."""
        if self.state == SessionState.STREAMING:
            await self._emit(StatusKind.DISCONNECTED, message=str(error))

        try:
            delay = self.backoff.next_delay()
        except BackoffExceeded as exceeded:
            await self._fail(RejectReason.EXHAUSTED, StatusKind.BACKOFF_EXCEEDED, str(exceeded))
            return False

        self._transition(SessionState.RETRYING)
        self.retry_count = self.backoff.attempts
        self.next_retry_at = datetime.now() + timedelta(seconds=delay)
        if self._metrics is not None:
            self._metrics.record_reconnect()

        logger.warning(
            f"Session {self.id}: {error}; reconnecting in {delay:.1f}s "
            f"(attempt {self.retry_count}/{self.backoff.max_attempts})"
        )
        await self._emit(
            StatusKind.RECONNECTING, message=str(error), attempt=self.retry_count, delay=delay
        )

        await self._sleep(delay)
        self.next_retry_at = None
        return True

    async def _sleep(self, delay: float) -> None:
        """Sleep, waking early on stop."""
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _fail(
        self, reason: RejectReason, kind: StatusKind, message: str, **details: Any
    ) -> None:
        self._transition(SessionState.REJECTED, reason)
        logger.error(f"Session {self.id} rejected ({reason.value}): {message}")
        await self._emit(kind, message=message, was_streaming=self._has_streamed, **details)

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        await self._close_connection()

        dropped = self.flow.clear()
        if dropped:
            logger.info(f"Session {self.id}: discarded {dropped} buffered chunk(s)")

        for task in list(self._metadata_tasks):
            task.cancel()

        if not self.is_terminal:
            self._transition(SessionState.CLOSED)
            await self._emit(StatusKind.STOPPED)

        logger.info(
            f"Session {self.id} ended ({self.state.value}), "
            f"{self.bytes_forwarded} bytes forwarded"
        )

        if self._on_finished is not None:
            try:
                self._on_finished(self)
            except Exception as e:
                logger.error(f"Session {self.id} finish callback failed: {e}")

    async def _close_connection(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    # ------------------------------------------------------------------
    # State and notifications
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState, reason: Optional[RejectReason] = None) -> None:
        allowed = _TRANSITIONS[self.state]
        if self.is_terminal or new_state not in allowed:
            raise RuntimeError(
                f"Invalid session transition {self.state.value} -> {new_state.value}"
            )

        logger.debug(f"Session {self.id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.reject_reason = reason if new_state == SessionState.REJECTED else None

        if self._metrics is not None:
            self._metrics.record_transition(new_state.value)

    def _record_handshake(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_handshake(outcome)

    async def _emit(self, kind: StatusKind, message: str = "", mount: str = "", **details: Any) -> None:
        event = StatusEvent(
            kind=kind,
            session_id=self.id,
            mount=mount or self.current_mount,
            bytes_forwarded=self.bytes_forwarded,
            message=message,
            details=details,
        )
        self.history.append(event)
        for payload in to_producer_messages(event):
            await self._notify(payload)

    async def _notify(self, payload: Dict[str, Any]) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier(payload)
        except Exception as e:
            logger.error(f"Session {self.id}: failed to notify producer: {e}")

    def get_status(self) -> Dict[str, Any]:
        """
        Get session status.

        Returns:
            Dictionary with session state and counters
        """
        return {
            "id": self.id,
            "state": self.state.value,
            "reject_reason": self.reject_reason.value if self.reject_reason else None,
            "mount": self.current_mount,
            "mount_index": self.mount_index,
            "bytes_forwarded": self.bytes_forwarded,
            "last_activity": (
                self.last_activity_time.isoformat() if self.last_activity_time else None
            ),
            "retry_count": self.retry_count,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "connect_attempts": self.connect_attempts,
            "uptime_seconds": (datetime.now() - self.started_at).total_seconds(),
            "buffer": self.flow.get_stats(),
            "recent_events": [
                {
                    "kind": event.kind.value,
                    "mount": event.mount,
                    "message": event.message,
                    "timestamp": event.timestamp.isoformat(),
                }
                for event in list(self.history)[-10:]
            ],
        }
