"""
Session registry: at most one live relay session per producer identity.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from harbor_bridge.config import BridgeConfig, DuplicatePolicy
from harbor_bridge.errors import AlreadyStreaming
from harbor_bridge.metadata import MetadataUpdater
from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.models import StreamParameters
from harbor_bridge.session import Notifier, RelaySession

logger = logging.getLogger(__name__)


@dataclass
class _ProducerLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionRegistry:
    """
    Maps producer identities to their live relay session.

    A second start for an identity that still has a live session is either
    rejected with AlreadyStreaming (default) or replaces the old session,
    depending on ``config.duplicate_policy``. Replacement happens under that
    producer's lock: the old session is fully stopped before the new one
    starts, so two upstream connections never coexist for one producer.
    A slow replacement never holds up other producers.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        metrics: Optional[BridgeMetrics] = None,
        metadata_updater: Optional[MetadataUpdater] = None,
    ):
        """
        Initialize session registry.

        Args:
            config: Relay configuration (creates default if not provided)
            metrics: Prometheus metrics shared by all sessions (optional)
            metadata_updater: Now-playing forwarder shared by all sessions (optional)
        """
        if config is None:
            from harbor_bridge.config import get_config

            config = get_config()

        self.config = config
        self.metrics = metrics
        self.metadata_updater = metadata_updater
        self._sessions: Dict[str, RelaySession] = {}
        self._locks: Dict[str, _ProducerLock] = {}

        logger.info(
            f"Session registry initialized (target: {config.target}, "
            f"duplicate policy: {config.duplicate_policy.value})"
        )

    async def start(
        self,
        producer_id: str,
        params: StreamParameters,
        notifier: Optional[Notifier] = None,
    ) -> RelaySession:
        """
        Create and start a session for a producer.

        Args:
            producer_id: Producer identity
            params: Stream parameters from the start-stream message
            notifier: Coroutine receiving status messages for this producer

        Returns:
            The started session

        Raises:
            AlreadyStreaming: If the producer has a live session and the
                policy is REJECT
        """
        async with self._producer_lock(producer_id):
            existing = self._sessions.get(producer_id)
            if existing is not None and not existing.is_finished:
                if self.config.duplicate_policy == DuplicatePolicy.REJECT:
                    logger.warning(f"Rejecting second start-stream from {producer_id}")
                    raise AlreadyStreaming(producer_id)

                logger.info(f"Replacing live session of {producer_id}")
                await existing.stop()

            session = RelaySession(
                session_id=producer_id,
                params=params,
                config=self.config,
                notifier=notifier,
                metrics=self.metrics,
                metadata_updater=self.metadata_updater,
                on_finished=self._release,
            )
            self._sessions[producer_id] = session
            session.start()

            if self.metrics is not None:
                self.metrics.session_started()
            self._update_gauge()
            return session

    async def stop(self, producer_id: str, session: Optional[RelaySession] = None) -> bool:
        """
        Stop and remove a producer's session.

        Args:
            producer_id: Producer identity
            session: Only stop if this is still the registered session

        Returns:
            True if a session was stopped
        """
        async with self._producer_lock(producer_id):
            current = self._sessions.get(producer_id)
            if current is None or (session is not None and current is not session):
                return False
            await current.stop()
            self._discard(producer_id, current)
            return True

    @asynccontextmanager
    async def _producer_lock(self, producer_id: str) -> AsyncIterator[None]:
        """Serialize start/stop for one producer; dropped once nobody holds or waits on it."""
        entry = self._locks.get(producer_id)
        if entry is None:
            entry = self._locks[producer_id] = _ProducerLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[producer_id]

    def get(self, producer_id: str) -> Optional[RelaySession]:
        return self._sessions.get(producer_id)

    def sessions(self) -> List[RelaySession]:
        return list(self._sessions.values())

    @property
    def active_count(self) -> int:
        return sum(1 for session in self._sessions.values() if not session.is_finished)

    def _release(self, session: RelaySession) -> None:
        """Finish callback: a session that ended on its own frees its slot."""
        self._discard(session.id, session)

    def _discard(self, producer_id: str, session: RelaySession) -> None:
        if self._sessions.get(producer_id) is session:
            del self._sessions[producer_id]
            logger.debug(f"Released session slot of {producer_id}")
        self._update_gauge()

    def _update_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.set_active_sessions(len(self._sessions))

    async def shutdown(self) -> None:
        """Stop every session."""
        sessions = list(self._sessions.items())
        if sessions:
            logger.info(f"Stopping {len(sessions)} relay session(s)")
        for producer_id, session in sessions:
            async with self._producer_lock(producer_id):
                await session.stop()
                self._discard(producer_id, session)

        if self.metadata_updater is not None:
            await self.metadata_updater.close()

    def get_stats(self) -> Dict:
        """
        Get registry statistics.

        Returns:
            Dictionary with per-session status
        """
        return {
            "active_sessions": self.active_count,
            "target": self.config.target,
            "dialect": self.config.dialect.value,
            "duplicate_policy": self.config.duplicate_policy.value,
            "sessions": {pid: s.get_status() for pid, s in self._sessions.items()},
        }
