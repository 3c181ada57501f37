"""Ordered mount point candidates for one session."""

import logging
from typing import Iterable, List

from harbor_bridge.config import DEFAULT_MOUNT_POINTS
from harbor_bridge.errors import MountsExhausted

logger = logging.getLogger(__name__)


class MountResolver:
    """
    Walks an ordered list of mount candidates.

    Duplicates are dropped (first occurrence wins); the remaining order is
    kept exactly as configured. ``advance()`` past the last candidate raises
    MountsExhausted and leaves the resolver on the last candidate.
    """

    def __init__(self, candidates: Iterable[str] = DEFAULT_MOUNT_POINTS):
        seen = set()
        self._candidates: List[str] = []
        for mount in candidates:
            if mount and mount not in seen:
                seen.add(mount)
                self._candidates.append(mount)

        if not self._candidates:
            raise ValueError("MountResolver needs at least one mount candidate")

        self._index = 0

    @property
    def candidates(self) -> List[str]:
        return list(self._candidates)

    @property
    def index(self) -> int:
        return self._index

    def current(self) -> str:
        """Mount currently being attempted."""
        return self._candidates[self._index]

    def has_next(self) -> bool:
        return self._index + 1 < len(self._candidates)

    def advance(self) -> str:
        """
        Move to the next candidate.

        Returns:
            The new current mount

        Raises:
            MountsExhausted: If the current mount was the last candidate
        """
        if not self.has_next():
            raise MountsExhausted(self.tried())
        self._index += 1
        logger.info(
            f"Advancing to mount {self.current()} "
            f"({self._index + 1}/{len(self._candidates)})"
        )
        return self.current()

    def tried(self) -> List[str]:
        """Candidates attempted so far, in order."""
        return self._candidates[: self._index + 1]

    def reset(self) -> None:
        self._index = 0

    def __len__(self) -> int:
        return len(self._candidates)
