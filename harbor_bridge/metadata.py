"""
Best-effort now-playing metadata forwarding.

Icecast-family servers take title updates for a live source through
/admin/metadata?mode=updinfo. Updates are opportunistic: failures are
logged and never reported to the producer.
"""

import logging
from typing import Optional

import httpx

from harbor_bridge.models import Credentials

logger = logging.getLogger(__name__)


def format_song(title: Optional[str], artist: Optional[str], fallback: str = "Live Stream") -> str:
    """
    Combine artist and title into the single ICY song field.

    Args:
        title: Track title
        artist: Track artist

    Returns:
        "Artist - Title", the title alone, or the fallback
    """
    title = (title or "").strip()
    artist = (artist or "").strip()
    if artist and title:
        return f"{artist} - {title}"
    return title or fallback


class MetadataUpdater:
    """Sends now-playing updates to the upstream admin endpoint."""

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize metadata updater.

        Args:
            host: Upstream host
            port: Upstream port
            timeout: HTTP timeout in seconds
            client: Shared AsyncClient (a private one is created if not given)
        """
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def update(
        self,
        mount: str,
        credentials: Credentials,
        title: Optional[str],
        artist: Optional[str] = None,
    ) -> bool:
        """
        Push a song title for a mount.

        Args:
            mount: Mount the source is live on
            credentials: Source credentials (Basic auth)
            title: Track title
            artist: Track artist

        Returns:
            True if the server accepted the update
        """
        song = format_song(title, artist)
        if not mount.startswith("/"):
            mount = f"/{mount}"

        try:
            response = await self._get_client().get(
                f"{self.base_url}/admin/metadata",
                params={"mode": "updinfo", "mount": mount, "song": song},
                auth=(credentials.username, credentials.password),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Metadata update for {mount} failed: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(
                f"Metadata update for {mount} rejected: "
                f"{response.status_code} {response.reason_phrase}"
            )
            return False

        logger.info(f"Metadata updated on {mount}: {song}")
        return True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
