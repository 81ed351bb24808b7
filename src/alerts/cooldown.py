"""Repeat-notification gating.

Two layers decide whether a confirmed trigger may notify:

1. A short in-memory cooldown per alert, set after a successful dispatch,
   plus an in-flight claim held while a dispatch is running. These guard
   against overlapping passes and rapid re-entry.
2. The alert's frequency policy, evaluated against persisted history:
   ``once`` needs a reset (a not-met check) since the last trigger,
   ``hourly`` / ``daily`` need the period to have elapsed.
"""

import logging
from datetime import datetime, timedelta

from src.alerts.repository import AlertRepository
from src.alerts.schemas import AlertDefinition, NotificationFrequency
from src.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

FREQUENCY_PERIODS: dict[NotificationFrequency, timedelta] = {
    NotificationFrequency.HOURLY: timedelta(hours=1),
    NotificationFrequency.DAILY: timedelta(hours=24),
}


def frequency_allows(
    frequency: NotificationFrequency,
    last_triggered: datetime | None,
    now: datetime,
    reset_since_trigger: bool = False,
) -> bool:
    """Apply a frequency policy.

    Args:
        frequency: The alert's policy.
        last_triggered: Time of the last delivered notification, if any.
        now: Current wall-clock time.
        reset_since_trigger: Whether a not-met check was recorded after
            ``last_triggered`` (only consulted for ``once``).

    Returns:
        True if a new notification is allowed.
    """
    if last_triggered is None:
        return True
    if frequency is NotificationFrequency.ONCE:
        return reset_since_trigger
    return now - last_triggered >= FREQUENCY_PERIODS[frequency]


class CooldownTracker:
    """Per-alert suppression combining in-memory cooldown and frequency policy."""

    def __init__(
        self,
        repository: AlertRepository,
        cooldown_seconds: float = 1800.0,
        clock: Clock | None = None,
    ) -> None:
        self._repo = repository
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock or SystemClock()
        self._cooldown_until: dict[int, float] = {}
        self._in_flight: set[int] = set()

    def in_cooldown(self, alert_id: int) -> bool:
        until = self._cooldown_until.get(alert_id)
        if until is None:
            return False
        if self._clock.monotonic() >= until:
            del self._cooldown_until[alert_id]
            return False
        return True

    def is_in_flight(self, alert_id: int) -> bool:
        return alert_id in self._in_flight

    async def should_notify(self, alert: AlertDefinition) -> bool:
        """Decide whether a confirmed trigger for ``alert`` may notify now.

        Args:
            alert: Definition whose condition is confirmed.

        Returns:
            True if neither the cooldown nor the frequency policy suppresses it.
        """
        if alert.alert_id in self._in_flight:
            logger.debug("Alert %s already dispatching", alert.alert_id)
            return False
        if self.in_cooldown(alert.alert_id):
            logger.debug("Alert %s in cooldown", alert.alert_id)
            return False

        last = await self._last_triggered(alert)
        reset = False
        if last is not None and alert.frequency is NotificationFrequency.ONCE:
            reset = await self._repo.count_unmet_checks_since(alert.alert_id, last) > 0

        allowed = frequency_allows(alert.frequency, last, self._clock.now(), reset)
        if not allowed:
            logger.debug(
                "Alert %s suppressed by %s frequency (last=%s)",
                alert.alert_id, alert.frequency.value, last,
            )
        return allowed

    def try_claim(self, alert_id: int) -> bool:
        """Mark a dispatch as in flight. False if one already is.

        No await between the check and the insert, so this is atomic on
        the event loop.
        """
        if alert_id in self._in_flight:
            return False
        self._in_flight.add(alert_id)
        return True

    def release(self, alert_id: int) -> None:
        self._in_flight.discard(alert_id)

    def mark_sent(self, alert_id: int) -> None:
        """Start the short-window cooldown after a successful dispatch."""
        self._cooldown_until[alert_id] = self._clock.monotonic() + self._cooldown_seconds

    def sweep(self) -> int:
        """Drop expired cooldown entries. Returns the number removed."""
        now = self._clock.monotonic()
        expired = [aid for aid, until in self._cooldown_until.items() if now >= until]
        for alert_id in expired:
            del self._cooldown_until[alert_id]
        return len(expired)

    async def _last_triggered(self, alert: AlertDefinition) -> datetime | None:
        """Later of the definition's stamp and the newest delivered trigger."""
        candidates = [alert.last_triggered] if alert.last_triggered else []
        record = await self._repo.get_last_sent_trigger(alert.alert_id)
        if record is not None:
            candidates.append(record.triggered_at)
        return max(candidates) if candidates else None
