"""
Upstream TCP connection to the broadcast server's source port.

Owns exactly one socket: connects, sends the SOURCE request, reads and
classifies the handshake response, writes audio chunks and closes.
"""

import asyncio
import logging
from typing import Callable, Optional

from harbor_bridge.errors import (
    AuthenticationError,
    ConnectError,
    MountUnavailable,
    ProtocolError,
    UpstreamWriteError,
)
from harbor_bridge.handshake import HandshakeOutcome, classify_response

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class UpstreamConnection:
    """
    One TCP connection to a Harbor/Icecast/Shoutcast source endpoint.

    Not shared: the session that creates a connection is its only user.
    """

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 10.0,
        on_lost: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize upstream connection.

        Args:
            host: Server host
            port: Server source port
            connect_timeout: TCP connect timeout in seconds
            on_lost: Called once if the server closes an accepted connection
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.response_buffer = bytearray()
        self.accepted_by_timeout = False

        self._on_lost = on_lost
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._lost = False
        self._closed = False

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._closed

    @property
    def writable(self) -> bool:
        return (
            self.is_open
            and not self._lost
            and not self._writer.is_closing()
        )

    @property
    def lost(self) -> bool:
        return self._lost

    async def open(self) -> None:
        """
        Open the TCP connection.

        Raises:
            ConnectError: If the connection cannot be established in time
        """
        logger.info(f"Connecting to {self.target}")
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Connect to {self.target} timed out") from e
        except OSError as e:
            raise ConnectError(f"Connect to {self.target} failed: {e}") from e

        logger.info(f"Connected to {self.target}")

    async def handshake(
        self,
        request: bytes,
        mount: str,
        acceptance_timeout: float = 1.0,
    ) -> HandshakeOutcome:
        """
        Send the SOURCE request and wait for the server's verdict.

        The request goes out immediately. A 200/OK status line accepts the
        connection; 401/403 and 404 reject it. If nothing rejecting arrives
        before ``acceptance_timeout`` elapses the connection is accepted,
        since some servers answer a successful SOURCE with silence.

        Args:
            request: SOURCE request bytes
            mount: Mount being attempted (for error reporting)
            acceptance_timeout: Seconds of silence that count as acceptance

        Returns:
            HandshakeOutcome.ACCEPTED

        Raises:
            AuthenticationError: On 401/403
            MountUnavailable: On 404
            ProtocolError: On an unrecognized status line
            ConnectError: If the socket fails or closes mid-handshake
        """
        if self._writer is None or self._reader is None:
            raise ConnectError("Handshake attempted before connecting")

        self.response_buffer.clear()
        self.accepted_by_timeout = False

        try:
            self._writer.write(request)
            await self._writer.drain()
        except (OSError, RuntimeError) as e:
            raise ConnectError(f"Sending SOURCE request failed: {e}") from e

        loop = asyncio.get_running_loop()
        deadline = loop.time() + acceptance_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._settle(self._final_outcome(), mount)

            try:
                data = await asyncio.wait_for(self._reader.read(READ_SIZE), timeout=remaining)
            except asyncio.TimeoutError:
                return self._settle(self._final_outcome(), mount)
            except OSError as e:
                raise ConnectError(f"Connection error during handshake: {e}") from e

            if not data:
                # A status line without a line ending is judged as it stands
                if self.response_buffer:
                    outcome = classify_response(bytes(self.response_buffer), final=True)
                    if outcome in (
                        HandshakeOutcome.AUTH_REJECTED,
                        HandshakeOutcome.MOUNT_REJECTED,
                    ):
                        return self._settle(outcome, mount)
                raise ConnectError(f"{self.target} closed the connection during handshake")

            self.response_buffer.extend(data)
            outcome = classify_response(bytes(self.response_buffer))
            if outcome != HandshakeOutcome.INCOMPLETE:
                return self._settle(outcome, mount)

    def _final_outcome(self) -> HandshakeOutcome:
        outcome = classify_response(bytes(self.response_buffer), final=True)
        if outcome == HandshakeOutcome.ACCEPTED:
            self.accepted_by_timeout = True
            logger.info(
                f"No rejection from {self.target} within acceptance timeout, "
                f"treating as accepted"
            )
        return outcome

    def _settle(self, outcome: HandshakeOutcome, mount: str) -> HandshakeOutcome:
        response = bytes(self.response_buffer)
        summary = response.decode("latin-1", errors="replace").strip()[:200]

        if outcome == HandshakeOutcome.ACCEPTED:
            if summary:
                logger.info(f"Harbor accepted {mount}: {summary.splitlines()[0]}")
            return outcome
        if outcome == HandshakeOutcome.AUTH_REJECTED:
            logger.error(f"Authentication rejected by {self.target}: {summary}")
            raise AuthenticationError(f"Authentication failed: {summary}", response)
        if outcome == HandshakeOutcome.MOUNT_REJECTED:
            logger.warning(f"Mount point {mount} not found on {self.target}")
            raise MountUnavailable(mount, response)

        logger.error(f"Unrecognized handshake response from {self.target}: {summary!r}")
        raise ProtocolError(f"Unrecognized response: {summary}", response)

    def start_watch(self) -> None:
        """Watch an accepted connection for the server closing it."""
        if self._watch_task is None and self._reader is not None:
            self._watch_task = asyncio.create_task(self._watch())

    async def _watch(self) -> None:
        try:
            while True:
                data = await self._reader.read(READ_SIZE)
                if not data:
                    logger.warning(f"{self.target} closed the source connection")
                    break
                logger.debug(f"Ignoring {len(data)} bytes from {self.target}")
        except OSError as e:
            logger.warning(f"Upstream read error from {self.target}: {e}")

        self._lost = True
        if self._on_lost is not None:
            self._on_lost()

    async def write(self, chunk: bytes) -> None:
        """
        Write one chunk and wait for the transport to accept it.

        Raises:
            UpstreamWriteError: If the connection is gone or the write fails
        """
        if not self.writable:
            raise UpstreamWriteError(f"Connection to {self.target} is not writable")

        try:
            self._writer.write(chunk)
            await self._writer.drain()
        except (OSError, RuntimeError) as e:
            self._lost = True
            raise UpstreamWriteError(f"Write to {self.target} failed: {e}") from e

    async def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (OSError, RuntimeError) as e:
                logger.debug(f"Error while closing {self.target}: {e}")

        logger.info(f"Closed connection to {self.target}")
