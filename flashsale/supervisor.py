from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .config import SupervisorConfig

log = logging.getLogger("flash-sale.supervisor")


@dataclass(slots=True)
class SupervisorStats:
    attempts: int
    max_attempts: int
    last_success: float | None


class ConnectionSupervisor:
    """Exponential backoff with jitter around upstream reconnect attempts."""

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or SupervisorConfig()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self.attempts = 0
        self.last_success: float | None = None
        self._last_activity: float | None = None

    def on_success(self) -> None:
        self.attempts = 0
        self.last_success = self._clock()
        self._last_activity = self.last_success
        log.info("Connection successful, resetting reconnection counter")

    def next_delay(self) -> float:
        """Backoff for the current attempt before jitter."""
        exponent = max(self.attempts - 1, 0)
        return min(self._config.max_delay, self._config.base_delay * 2**exponent)

    async def should_retry(self) -> bool:
        now = self._clock()
        last = self._last_activity
        if last is None or now - last > self._config.window:
            # Quiet for a whole window: this failure starts a fresh streak.
            self.attempts = 0

        if self.attempts >= self._config.max_attempts:
            log.error(
                "Max reconnection attempts (%s) reached. Shutting down.",
                self._config.max_attempts,
            )
            return False

        self.attempts += 1
        delay = self.next_delay()
        delay += self._rng.uniform(0, delay * 0.25)
        log.info(
            "Reconnection attempt %s/%s in %.1fs",
            self.attempts,
            self._config.max_attempts,
            delay,
        )
        await self._sleep(delay)
        self._last_activity = self._clock()
        return True

    def stats(self) -> SupervisorStats:
        return SupervisorStats(
            attempts=self.attempts,
            max_attempts=self._config.max_attempts,
            last_success=self.last_success,
        )
