"""Exponential reconnect backoff with an attempt budget."""

import logging

from harbor_bridge.config import BridgeConfig
from harbor_bridge.errors import BackoffExceeded

logger = logging.getLogger(__name__)


class BackoffPolicy:
    """
    Exponential backoff: base * multiplier^(n-1), capped.

    Delays never decrease across consecutive attempts. Once ``max_attempts``
    delays have been handed out, the next request raises BackoffExceeded.
    """

    def __init__(
        self,
        base: float = 1.0,
        multiplier: float = 2.0,
        cap: float = 30.0,
        max_attempts: int = 5,
    ):
        if base < 0 or cap < 0:
            raise ValueError("Backoff delays must be non-negative")
        if multiplier < 1.0:
            raise ValueError("Backoff multiplier must be >= 1.0")
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

        self.base = base
        self.multiplier = multiplier
        self.cap = cap
        self.max_attempts = max_attempts
        self._attempts = 0

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "BackoffPolicy":
        return cls(
            base=config.backoff_base,
            multiplier=config.backoff_multiplier,
            cap=config.backoff_cap,
            max_attempts=config.max_retry_attempts,
        )

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """
        Delay before the given attempt (1-based).

        Args:
            attempt: Attempt number, starting at 1

        Returns:
            Delay in seconds
        """
        if attempt < 1:
            return 0.0
        return min(self.cap, self.base * (self.multiplier ** (attempt - 1)))

    def next_delay(self) -> float:
        """
        Consume one attempt and return its delay.

        Raises:
            BackoffExceeded: If the attempt budget is used up
        """
        if self.exhausted:
            logger.error(f"Max reconnect attempts ({self.max_attempts}) reached")
            raise BackoffExceeded(self._attempts)

        self._attempts += 1
        delay = self.delay_for(self._attempts)
        logger.debug(f"Backoff attempt {self._attempts}/{self.max_attempts}: {delay:.2f}s")
        return delay

    def reset(self) -> None:
        """Reset after a successful connection."""
        if self._attempts > 0:
            logger.info(f"Resetting backoff (was {self._attempts} attempts)")
        self._attempts = 0
