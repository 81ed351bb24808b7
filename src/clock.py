"""Injectable clock used by caches, cooldowns, and the scheduler.

Wall-clock time (``now``) is compared against persisted timestamps such as
``last_triggered``; the monotonic reading drives in-process expiries so they
are immune to system clock adjustments.
"""

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Clock backed by the host's real time sources."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()
