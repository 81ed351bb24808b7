"""Tests for AlertRepository and LocationRepository with mocked Database."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from src.alerts.repository import (
    AlertRepository,
    LocationRepository,
    _row_to_definition,
    _row_to_location,
)
from src.alerts.schemas import (
    AlertCheckRecord,
    AlertTriggerRecord,
    InvalidAlertDefinitionError,
    MetricKind,
    NotificationFrequency,
    Operator,
)


@pytest.fixture
def mock_db():
    db = AsyncMock()
    return db


@pytest.fixture
def repo(mock_db):
    return AlertRepository(mock_db)


@pytest.fixture
def locations(mock_db):
    return LocationRepository(mock_db)


def _make_db_row(**overrides):
    """Create a mock asyncpg Record for the alerts table as a dict."""
    row = {
        "id": 7,
        "name": "Frost watch",
        "field_id": 3,
        "alert_type": "temperature",
        "condition_type": "lessThan",
        "threshold_value": Decimal("2.00"),
        "second_threshold_value": None,
        "duration_hours": 1,
        "email_notification": True,
        "notification_emails": "grower@example.com",
        "sms_notification": False,
        "whatsapp_notification": False,
        "phone_numbers": None,
        "notification_frequency": "daily",
        "active": True,
        "last_triggered": None,
    }
    row.update(overrides)
    return row


def _make_field_row(**overrides):
    row = {
        "id": 3,
        "name": "South Block",
        "farm_name": "Hillside",
        "crop": "Barley",
        "area_ha": Decimal("8.50"),
        "center_lat": -35.1,
        "center_lon": 149.2,
    }
    row.update(overrides)
    return row


# ── Row conversion ──────────────────────────────────────


class TestRowToDefinition:
    """Test the module-level _row_to_definition helper."""

    def test_basic_conversion(self):
        alert = _row_to_definition(_make_db_row())
        assert alert.alert_id == 7
        assert alert.location_id == 3
        assert alert.metric_kind is MetricKind.TEMPERATURE
        assert alert.operator is Operator.LESS_THAN
        assert alert.threshold == 2.0
        assert alert.frequency is NotificationFrequency.DAILY
        assert alert.email_recipients == ["grower@example.com"]

    def test_naive_last_triggered_made_utc(self):
        alert = _row_to_definition(
            _make_db_row(last_triggered=datetime(2026, 5, 1, 6, 0))
        )
        assert alert.last_triggered.tzinfo is timezone.utc

    def test_missing_optional_fields_use_defaults(self):
        row = _make_db_row()
        for key in ("duration_hours", "notification_frequency", "second_threshold_value"):
            row[key] = None
        alert = _row_to_definition(row)
        assert alert.duration_hours == 0
        assert alert.frequency is NotificationFrequency.ONCE
        assert alert.threshold2 is None

    def test_windspeed_alias(self):
        alert = _row_to_definition(_make_db_row(alert_type="windspeed"))
        assert alert.metric_kind is MetricKind.WIND_SPEED


class TestRowToLocation:

    def test_conversion(self):
        loc = _row_to_location(_make_field_row())
        assert loc.location_id == 3
        assert loc.latitude == -35.1
        assert loc.area_ha == 8.5
        assert loc.has_coordinates

    def test_null_coordinates(self):
        loc = _row_to_location(_make_field_row(center_lat=None, center_lon=None))
        assert loc.has_coordinates is False

    def test_latest_ndvi(self):
        assert _row_to_location(_make_field_row(ndvi=Decimal("0.37"))).ndvi == 0.37
        assert _row_to_location(_make_field_row(ndvi=None)).ndvi is None


# ── Definitions ─────────────────────────────────────────


class TestGetActiveDefinitions:
    """Loading active definitions."""

    @pytest.mark.asyncio
    async def test_filters_active(self, repo, mock_db):
        mock_db.fetch.return_value = [_make_db_row()]
        result = await repo.get_active_definitions()
        assert len(result) == 1
        sql = mock_db.fetch.call_args[0][0]
        assert "active = TRUE" in sql

    @pytest.mark.asyncio
    async def test_invalid_rows_skipped(self, repo, mock_db):
        mock_db.fetch.return_value = [
            _make_db_row(id=1),
            _make_db_row(id=2, condition_type="between"),  # no second threshold
            _make_db_row(id=3, notification_emails="nope"),
            _make_db_row(id=4, alert_type="humidity"),
            _make_db_row(id=5),
        ]
        result = await repo.get_active_definitions()
        assert [a.alert_id for a in result] == [1, 5]

    @pytest.mark.asyncio
    async def test_get_definition_missing(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await repo.get_definition(99) is None

    @pytest.mark.asyncio
    async def test_get_definition_malformed(self, repo, mock_db):
        mock_db.fetchrow.return_value = _make_db_row(condition_type="between")
        with pytest.raises(InvalidAlertDefinitionError):
            await repo.get_definition(7)

    @pytest.mark.asyncio
    async def test_get_definition_missing_column(self, repo, mock_db):
        row = _make_db_row()
        del row["alert_type"]
        mock_db.fetchrow.return_value = row
        with pytest.raises(InvalidAlertDefinitionError, match="alert 7"):
            await repo.get_definition(7)


# ── Logs ────────────────────────────────────────────────


class TestCheckLog:
    """alert_checks reads and writes."""

    @pytest.mark.asyncio
    async def test_record_check(self, repo, mock_db):
        ts = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        await repo.record_check(AlertCheckRecord(7, 1.5, True, ts))
        args = mock_db.execute.call_args[0]
        assert "INSERT INTO alert_checks" in args[0]
        assert args[1:] == (7, 1.5, True, ts)

    @pytest.mark.asyncio
    async def test_recent_checks_newest_first(self, repo, mock_db):
        ts = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        mock_db.fetch.return_value = [
            {"alert_id": 7, "value": 1.0, "condition_met": True, "timestamp": ts},
        ]
        result = await repo.get_recent_checks(7, 3)
        assert result[0].condition_met is True
        sql, alert_id, limit = mock_db.fetch.call_args[0]
        assert "ORDER BY timestamp DESC" in sql
        assert (alert_id, limit) == (7, 3)

    @pytest.mark.asyncio
    async def test_count_unmet_handles_null(self, repo, mock_db):
        mock_db.fetchval.return_value = None
        since = datetime(2026, 6, 1, tzinfo=timezone.utc)
        assert await repo.count_unmet_checks_since(7, since) == 0


class TestTriggerLog:
    """alert_triggers reads and writes."""

    @pytest.mark.asyncio
    async def test_record_trigger(self, repo, mock_db):
        ts = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        await repo.record_trigger(AlertTriggerRecord(7, 40.0, False, ts))
        args = mock_db.execute.call_args[0]
        assert "INSERT INTO alert_triggers" in args[0]
        assert args[1:] == (7, 40.0, False, ts)

    @pytest.mark.asyncio
    async def test_last_sent_trigger(self, repo, mock_db):
        ts = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        mock_db.fetchrow.return_value = {
            "alert_id": 7, "value": 40.0, "notification_sent": True, "timestamp": ts,
        }
        record = await repo.get_last_sent_trigger(7)
        assert record.triggered_at == ts
        assert "notification_sent = TRUE" in mock_db.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_update_last_triggered(self, repo, mock_db):
        ts = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        await repo.update_last_triggered(7, ts)
        sql, alert_id, when = mock_db.execute.call_args[0]
        assert "UPDATE alerts SET last_triggered" in sql
        assert (alert_id, when) == (7, ts)

    @pytest.mark.asyncio
    async def test_trigger_stats(self, repo, mock_db):
        mock_db.fetch.return_value = [{
            "alert_id": 7, "name": "Frost watch", "total": 3,
            "sent": 2, "failed": 1, "last_at": None,
        }]
        stats = await repo.get_trigger_stats(days=7)
        assert stats[0]["sent"] == 2
        assert stats[0]["failed"] == 1


class TestSchema:

    @pytest.mark.asyncio
    async def test_create_tables(self, repo, mock_db):
        await repo.create_tables()
        sql = mock_db.execute.call_args[0][0]
        for table in ("fields", "alerts", "alert_checks", "alert_triggers", "ndvi_measurements"):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


# ── Locations ───────────────────────────────────────────


class TestLocationRepository:

    @pytest.mark.asyncio
    async def test_batch_lookup(self, locations, mock_db):
        mock_db.fetch.return_value = [_make_field_row(id=3), _make_field_row(id=4)]
        result = await locations.get_by_ids([3, 4, 5])
        assert set(result) == {3, 4}
        assert mock_db.fetch.call_args[0][1] == [3, 4, 5]

    @pytest.mark.asyncio
    async def test_empty_ids_skip_query(self, locations, mock_db):
        assert await locations.get_by_ids([]) == {}
        mock_db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_joins_latest_ndvi(self, locations, mock_db):
        mock_db.fetch.return_value = [_make_field_row(ndvi=0.61)]
        result = await locations.get_by_ids([3])
        assert result[3].ndvi == 0.61
        sql = mock_db.fetch.call_args[0][0]
        assert "ndvi_measurements" in sql
        assert "ORDER BY timestamp DESC" in sql
