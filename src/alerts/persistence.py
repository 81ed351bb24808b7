"""Duration-based trigger confirmation.

A condition with a persistence requirement only escalates once it has held
for every one of the most recent N checks. Insufficient history is never
treated as persistent.
"""

import logging
import math

from src.alerts.repository import AlertRepository
from src.alerts.schemas import AlertDefinition

logger = logging.getLogger(__name__)


def required_checks(duration_hours: int, check_interval_seconds: float) -> int:
    """Translate a persistence duration into a count of consecutive checks.

    Durations of 0 or 1 hour are immediate and need only the current check.

    Args:
        duration_hours: Configured minimum persistence.
        check_interval_seconds: Scheduling period.

    Returns:
        Number of consecutive met checks required (>= 1).
    """
    if duration_hours <= 1:
        return 1
    return max(1, math.ceil(duration_hours * 3600 / check_interval_seconds))


class PersistenceTracker:
    """Reads the check log to decide whether a breach has been sustained."""

    def __init__(
        self,
        repository: AlertRepository,
        check_interval_seconds: float,
    ) -> None:
        self._repo = repository
        self._check_interval = check_interval_seconds

    async def is_persistent(self, alert_id: int, required: int) -> bool:
        """Check that the newest ``required`` checks all met the condition.

        Args:
            alert_id: Alert whose history to inspect.
            required: Window length in checks.

        Returns:
            True only if the window is fully populated and every entry is met.
        """
        if required <= 0:
            return True

        history = await self._repo.get_recent_checks(alert_id, required)
        if len(history) < required:
            logger.debug(
                "Alert %s has %d/%d checks, not yet persistent",
                alert_id, len(history), required,
            )
            return False
        return all(check.condition_met for check in history)

    async def is_definition_persistent(self, definition: AlertDefinition) -> bool:
        """Apply :meth:`is_persistent` with the window derived from the definition."""
        if not definition.requires_persistence:
            return True
        window = required_checks(definition.duration_hours, self._check_interval)
        return await self.is_persistent(definition.alert_id, window)
