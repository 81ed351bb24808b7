"""Fixed-quota limiter for upstream observation calls."""

import logging

from src.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows ``max_calls`` acquisitions per window, then refuses until it elapses.

    Never blocks: callers that are refused fall back to stale cached data.
    The window starts at the first acquisition after a reset.

    Usage:
        limiter = RateLimiter(max_calls=100, window_seconds=3600)
        if limiter.try_acquire():
            await provider.fetch(lat, lon)
    """

    def __init__(
        self,
        max_calls: int = 100,
        window_seconds: float = 3600.0,
        clock: Clock | None = None,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock or SystemClock()
        self._window_start: float | None = None
        self._used = 0

    def _roll_window(self, now: float) -> None:
        if self._window_start is None or now - self._window_start >= self._window:
            self._window_start = now
            self._used = 0

    def try_acquire(self) -> bool:
        """Take one call from the quota.

        No await between the check and the increment, so concurrent
        evaluation tasks cannot overdraw the quota.

        Returns:
            True if the call may proceed.
        """
        now = self._clock.monotonic()
        self._roll_window(now)
        if self._used >= self._max_calls:
            logger.debug("Observation quota exhausted (%d/%d)", self._used, self._max_calls)
            return False
        self._used += 1
        return True

    @property
    def remaining(self) -> int:
        """Calls left in the current window."""
        if self._window_start is None:
            return self._max_calls
        if self._clock.monotonic() - self._window_start >= self._window:
            return self._max_calls
        return self._max_calls - self._used
