"""
Bounded audio chunk queue between the producer and the upstream socket.

Chunks are kept whole and in arrival order. When the queue is full the
oldest chunk is evicted to admit the new one, so what reaches the server
stays close to "now" when the upstream stalls.
"""

import logging
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional

from harbor_bridge.config import BridgeConfig

logger = logging.getLogger(__name__)

ChunkWriter = Callable[[bytes], Awaitable[None]]


class FlowController:
    """
    FIFO chunk queue with a drop-oldest overflow policy.

    Capacity is an entry count plus an optional total byte cap. A chunk
    whose write fails is parked in ``in_flight`` (outside the queue) and is
    written first on the next drain.
    """

    def __init__(self, max_chunks: int = 64, max_bytes: int = 0):
        """
        Initialize flow controller.

        Args:
            max_chunks: Maximum number of queued chunks
            max_bytes: Maximum queued bytes, 0 for no byte cap
        """
        if max_chunks < 1:
            raise ValueError("max_chunks must be >= 1")
        if max_bytes < 0:
            raise ValueError("max_bytes must be >= 0")

        self.max_chunks = max_chunks
        self.max_bytes = max_bytes

        self._queue: Deque[bytes] = deque()
        self._queued_bytes = 0
        self.in_flight: Optional[bytes] = None

        self.evicted_chunks = 0
        self.evicted_bytes = 0
        self.enqueued_chunks = 0
        self.written_chunks = 0
        self.written_bytes = 0

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "FlowController":
        return cls(max_chunks=config.queue_max_chunks, max_bytes=config.queue_max_bytes)

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def queued_bytes(self) -> int:
        return self._queued_bytes

    @property
    def pending(self) -> bool:
        """Whether anything (queued or in flight) is waiting to be written."""
        return bool(self._queue) or self.in_flight is not None

    def snapshot(self) -> List[bytes]:
        """Copy of the queued chunks, oldest first."""
        return list(self._queue)

    def _over_capacity(self, incoming: int) -> bool:
        if len(self._queue) + 1 > self.max_chunks:
            return True
        if self.max_bytes and self._queued_bytes + incoming > self.max_bytes:
            return True
        return False

    def enqueue(self, chunk: bytes) -> int:
        """
        Append a chunk, evicting the oldest entries while over capacity.

        Never blocks. A single chunk larger than the byte cap is still
        admitted once everything older has been evicted.

        Args:
            chunk: Encoded audio bytes, kept as one unit

        Returns:
            Number of chunks evicted to make room
        """
        evicted = 0
        while self._queue and self._over_capacity(len(chunk)):
            dropped = self._queue.popleft()
            self._queued_bytes -= len(dropped)
            self.evicted_chunks += 1
            self.evicted_bytes += len(dropped)
            evicted += 1

        if evicted:
            logger.warning(
                f"Buffer overflow: evicted {evicted} chunk(s), "
                f"{self.evicted_chunks} total"
            )

        self._queue.append(chunk)
        self._queued_bytes += len(chunk)
        self.enqueued_chunks += 1
        return evicted

    async def drain(
        self,
        write: ChunkWriter,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Write queued chunks in FIFO order until the queue is empty.

        The parked in-flight chunk goes first. On a write failure the chunk
        being written is parked again and the error propagates; chunks
        already written are not re-queued.

        Args:
            write: Coroutine writing one whole chunk to the socket
            should_stop: Checked between chunks; True ends the drain early

        Returns:
            Number of bytes written
        """
        written = 0
        while self.pending:
            if should_stop is not None and should_stop():
                break

            if self.in_flight is not None:
                chunk = self.in_flight
            else:
                chunk = self._queue.popleft()
                self._queued_bytes -= len(chunk)
                self.in_flight = chunk

            await write(chunk)

            self.in_flight = None
            self.written_chunks += 1
            self.written_bytes += len(chunk)
            written += len(chunk)

        return written

    def clear(self) -> int:
        """Drop everything, including the in-flight chunk. Returns chunks dropped."""
        dropped = len(self._queue) + (1 if self.in_flight is not None else 0)
        self._queue.clear()
        self._queued_bytes = 0
        self.in_flight = None
        return dropped

    def get_stats(self) -> dict:
        return {
            "queued_chunks": len(self._queue),
            "queued_bytes": self._queued_bytes,
            "in_flight": self.in_flight is not None,
            "evicted_chunks": self.evicted_chunks,
            "evicted_bytes": self.evicted_bytes,
            "written_chunks": self.written_chunks,
            "written_bytes": self.written_bytes,
        }
