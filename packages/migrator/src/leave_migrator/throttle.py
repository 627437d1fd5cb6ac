"""Run-scoped tracking of Xero's per-minute call quota."""

import asyncio
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitState:
    """Last remaining-quota value observed during one migration run.

    ``remaining`` is None until a response carrying the quota header has
    been seen, and again after a cooldown (the minute window has rolled
    over by then).
    """

    threshold: int = 5
    cooldown_seconds: float = 60.0
    remaining: int | None = None
    pauses: int = 0

    def observe(self, remaining: int | None) -> None:
        """Record the quota reported by the latest API response."""
        if remaining is not None:
            self.remaining = remaining

    @property
    def exhausted(self) -> bool:
        return self.remaining is not None and self.remaining < self.threshold

    async def wait_if_exhausted(self) -> bool:
        """Sleep for the cooldown when the quota is nearly spent.

        Returns True if the run was paused.
        """
        if not self.exhausted:
            return False
        logger.info(
            "pausing_for_rate_limit",
            remaining=self.remaining,
            cooldown_seconds=self.cooldown_seconds,
        )
        await asyncio.sleep(self.cooldown_seconds)
        self.remaining = None
        self.pauses += 1
        return True
