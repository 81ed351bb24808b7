"""Tests for duration-based trigger confirmation."""

from datetime import timedelta

import pytest

from src.alerts.persistence import PersistenceTracker, required_checks
from src.alerts.schemas import AlertCheckRecord


def _history(repo, clock, alert_id, outcomes):
    """Append checks oldest first, one per hour."""
    for met in outcomes:
        repo.checks.append(AlertCheckRecord(alert_id, 1.0, met, clock.now()))
        clock.advance(timedelta(hours=1).total_seconds())


class TestRequiredChecks:

    @pytest.mark.parametrize("hours", [0, 1])
    def test_immediate(self, hours):
        assert required_checks(hours, 1800) == 1

    def test_hourly_interval(self):
        assert required_checks(3, 3600) == 3

    def test_half_hour_interval(self):
        assert required_checks(3, 1800) == 6

    def test_rounds_up(self):
        assert required_checks(2, 2700) == 3


class TestIsPersistent:
    """Window must be fully populated and entirely met."""

    @pytest.mark.asyncio
    async def test_short_history_is_false(self, alert_repo, clock):
        _history(alert_repo, clock, 1, [True, True])
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 3) is False

    @pytest.mark.asyncio
    async def test_empty_history_is_false(self, alert_repo):
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 1) is False

    @pytest.mark.asyncio
    async def test_one_false_in_window(self, alert_repo, clock):
        _history(alert_repo, clock, 1, [True, False, True])
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 3) is False

    @pytest.mark.asyncio
    async def test_all_true(self, alert_repo, clock):
        _history(alert_repo, clock, 1, [True, True, True])
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 3) is True

    @pytest.mark.asyncio
    async def test_only_newest_window_counts(self, alert_repo, clock):
        _history(alert_repo, clock, 1, [False, True, True, True])
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 3) is True

    @pytest.mark.asyncio
    async def test_other_alerts_ignored(self, alert_repo, clock):
        _history(alert_repo, clock, 2, [True, True, True])
        tracker = PersistenceTracker(alert_repo, 3600)
        assert await tracker.is_persistent(1, 3) is False


class TestDefinitionPersistence:

    @pytest.mark.asyncio
    async def test_immediate_definition_skips_history(self, alert_repo, make_alert):
        tracker = PersistenceTracker(alert_repo, 1800)
        assert await tracker.is_definition_persistent(make_alert(duration_hours=1)) is True

    @pytest.mark.asyncio
    async def test_window_from_interval(self, alert_repo, clock, make_alert):
        alert = make_alert(duration_hours=2)
        tracker = PersistenceTracker(alert_repo, 3600)

        _history(alert_repo, clock, alert.alert_id, [True])
        assert await tracker.is_definition_persistent(alert) is False

        _history(alert_repo, clock, alert.alert_id, [True])
        assert await tracker.is_definition_persistent(alert) is True
