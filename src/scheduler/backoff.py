"""
Exponential backoff for startup retries.

Used when the monitor cannot reach its definition store on launch: a few
immediate retries with growing, jittered delays, then the error is fatal.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    Computes delays as: min(base * multiplier^attempt, max_delay) +/- jitter.
    Call reset() after a successful operation to zero the attempt counter.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0)
        delay = backoff.next_delay()
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.25,
        rng: random.Random | None = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._rng = rng or random.Random()
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Number of delays handed out since the last reset."""
        return self._attempt

    def next_delay(self) -> float:
        """Return the next delay and advance the attempt counter."""
        delay = min(
            self.base_delay * (self.multiplier ** self._attempt),
            self.max_delay,
        )
        jitter = delay * self._rng.uniform(-self.jitter_range, self.jitter_range)
        self._attempt += 1
        return max(0.0, delay + jitter)

    def reset(self) -> None:
        self._attempt = 0


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    backoff: ExponentialBackoff,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation``, retrying up to ``retries`` more times on failure.

    Args:
        operation: Zero-argument coroutine factory.
        retries: Extra attempts after the first.
        backoff: Delay schedule between attempts.
        description: Name used in log lines.
        sleep: Awaitable sleep (injectable for tests).

    Returns:
        The operation's result.

    Raises:
        Exception: The last error once every attempt has failed.
    """
    while True:
        try:
            result = await operation()
        except Exception as e:
            if backoff.attempt >= retries:
                logger.error(
                    "%s failed after %d attempt(s): %s",
                    description, backoff.attempt + 1, e,
                )
                raise
            delay = backoff.next_delay()
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                description, backoff.attempt, retries + 1, delay, e,
            )
            await sleep(delay)
        else:
            backoff.reset()
            return result
