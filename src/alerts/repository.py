"""Alert repository for definition reads and the append-only check/trigger logs.

Follows the house repository pattern with asyncpg. Alert definitions,
field metadata and NDVI measurements are owned by the management layer;
the engine only reads them, appends to ``alert_checks`` /
``alert_triggers``, and stamps ``alerts.last_triggered``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from src.alerts.schemas import (
    AlertCheckRecord,
    AlertDefinition,
    AlertTriggerRecord,
    InvalidAlertDefinitionError,
    LocationMetadata,
)
from src.storage.database import Database

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS fields (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    farm_name TEXT,
    crop TEXT,
    area_ha NUMERIC(10, 2),
    center_lat DOUBLE PRECISION,
    center_lon DOUBLE PRECISION
);

CREATE TABLE IF NOT EXISTS alerts (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    field_id INTEGER NOT NULL REFERENCES fields(id) ON DELETE CASCADE,
    alert_type TEXT NOT NULL
        CHECK (alert_type IN ('temperature', 'rainfall', 'ndvi', 'wind')),
    condition_type TEXT NOT NULL
        CHECK (condition_type IN ('lessThan', 'greaterThan', 'equals', 'between')),
    threshold_value NUMERIC(10, 2) NOT NULL,
    second_threshold_value NUMERIC(10, 2),
    duration_hours INTEGER NOT NULL DEFAULT 1,
    email_notification BOOLEAN NOT NULL DEFAULT TRUE,
    notification_emails TEXT,
    sms_notification BOOLEAN NOT NULL DEFAULT FALSE,
    whatsapp_notification BOOLEAN NOT NULL DEFAULT FALSE,
    phone_numbers TEXT,
    notification_frequency TEXT NOT NULL DEFAULT 'once'
        CHECK (notification_frequency IN ('once', 'hourly', 'daily')),
    active BOOLEAN NOT NULL DEFAULT TRUE,
    last_triggered TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alerts_active ON alerts (active);

CREATE TABLE IF NOT EXISTS alert_checks (
    id BIGSERIAL PRIMARY KEY,
    alert_id INTEGER NOT NULL REFERENCES alerts(id) ON DELETE CASCADE,
    value DOUBLE PRECISION NOT NULL,
    condition_met BOOLEAN NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alert_checks_alert_ts
    ON alert_checks (alert_id, timestamp DESC);

CREATE TABLE IF NOT EXISTS alert_triggers (
    id BIGSERIAL PRIMARY KEY,
    alert_id INTEGER NOT NULL REFERENCES alerts(id) ON DELETE CASCADE,
    value DOUBLE PRECISION NOT NULL,
    notification_sent BOOLEAN NOT NULL DEFAULT FALSE,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alert_triggers_alert_ts
    ON alert_triggers (alert_id, timestamp DESC);

CREATE TABLE IF NOT EXISTS ndvi_measurements (
    id BIGSERIAL PRIMARY KEY,
    field_id INTEGER NOT NULL REFERENCES fields(id) ON DELETE CASCADE,
    value DOUBLE PRECISION NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_ndvi_measurements_field_ts
    ON ndvi_measurements (field_id, timestamp DESC);
"""


class AlertRepository:
    """Repository for alert definitions and the check/trigger logs."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the alert schema if it does not exist."""
        await self._db.execute(SCHEMA_SQL)
        logger.info("Alert tables created/verified")

    async def get_active_definitions(self) -> list[AlertDefinition]:
        """Load every active alert definition.

        Rows that violate the definition invariants (unknown metric kind,
        ``between`` without a second threshold, no valid recipients) are
        logged and skipped so one bad row cannot halt the cycle.

        Returns:
            Valid active definitions ordered by id.
        """
        sql = "SELECT * FROM alerts WHERE active = TRUE ORDER BY id"
        rows = await self._db.fetch(sql)

        definitions: list[AlertDefinition] = []
        for row in rows:
            try:
                definitions.append(_row_to_definition(row))
            except (InvalidAlertDefinitionError, KeyError, TypeError) as e:
                logger.error("Skipping invalid alert %s: %s", row.get("id"), e)
        return definitions

    async def get_definition(self, alert_id: int) -> AlertDefinition | None:
        """Get a single definition regardless of its active flag.

        Raises:
            InvalidAlertDefinitionError: If the stored row is malformed.
        """
        row = await self._db.fetchrow("SELECT * FROM alerts WHERE id = $1", alert_id)
        if row is None:
            return None
        try:
            return _row_to_definition(row)
        except (KeyError, TypeError) as e:
            raise InvalidAlertDefinitionError(f"alert {alert_id}: {e}") from e

    async def record_check(self, record: AlertCheckRecord) -> None:
        """Append one evaluation to ``alert_checks``."""
        sql = """
            INSERT INTO alert_checks (alert_id, value, condition_met, timestamp)
            VALUES ($1, $2, $3, $4)
        """
        await self._db.execute(
            sql,
            record.alert_id,
            record.value,
            record.condition_met,
            record.checked_at,
        )

    async def get_recent_checks(
        self,
        alert_id: int,
        limit: int,
    ) -> list[AlertCheckRecord]:
        """Get the newest ``limit`` checks for an alert, newest first."""
        sql = """
            SELECT alert_id, value, condition_met, timestamp
            FROM alert_checks
            WHERE alert_id = $1
            ORDER BY timestamp DESC
            LIMIT $2
        """
        rows = await self._db.fetch(sql, alert_id, limit)
        return [_row_to_check(row) for row in rows]

    async def count_unmet_checks_since(
        self,
        alert_id: int,
        since: datetime,
    ) -> int:
        """Count checks with ``condition_met = FALSE`` after ``since``.

        Used by the ``once`` frequency policy to detect a reset.
        """
        sql = """
            SELECT COUNT(*) FROM alert_checks
            WHERE alert_id = $1 AND timestamp > $2 AND condition_met = FALSE
        """
        count = await self._db.fetchval(sql, alert_id, since)
        return count or 0

    async def record_trigger(self, record: AlertTriggerRecord) -> None:
        """Append one trigger to ``alert_triggers``."""
        sql = """
            INSERT INTO alert_triggers (alert_id, value, notification_sent, timestamp)
            VALUES ($1, $2, $3, $4)
        """
        await self._db.execute(
            sql,
            record.alert_id,
            record.value,
            record.notification_sent,
            record.triggered_at,
        )

    async def get_last_sent_trigger(self, alert_id: int) -> AlertTriggerRecord | None:
        """Get the newest trigger whose notification was delivered."""
        sql = """
            SELECT alert_id, value, notification_sent, timestamp
            FROM alert_triggers
            WHERE alert_id = $1 AND notification_sent = TRUE
            ORDER BY timestamp DESC
            LIMIT 1
        """
        row = await self._db.fetchrow(sql, alert_id)
        if row is None:
            return None
        return _row_to_trigger(row)

    async def update_last_triggered(self, alert_id: int, when: datetime) -> None:
        """Stamp ``alerts.last_triggered``."""
        sql = "UPDATE alerts SET last_triggered = $2 WHERE id = $1"
        await self._db.execute(sql, alert_id, when)

    async def get_trigger_stats(self, days: int = 30) -> list[dict[str, Any]]:
        """Summarise triggers per alert over the last ``days`` days.

        Returns:
            Dicts with alert_id, name, total, sent, failed, last_at.
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        sql = """
            SELECT
                t.alert_id,
                a.name,
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE t.notification_sent) AS sent,
                COUNT(*) FILTER (WHERE NOT t.notification_sent) AS failed,
                MAX(t.timestamp) AS last_at
            FROM alert_triggers t
            JOIN alerts a ON a.id = t.alert_id
            WHERE t.timestamp >= $1
            GROUP BY t.alert_id, a.name
            ORDER BY total DESC
        """
        rows = await self._db.fetch(sql, since)
        return [
            {
                "alert_id": row["alert_id"],
                "name": row["name"],
                "total": row["total"],
                "sent": row["sent"],
                "failed": row["failed"],
                "last_at": row["last_at"],
            }
            for row in rows
        ]


class LocationRepository:
    """Read-only access to field metadata."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_by_ids(self, location_ids: list[int]) -> dict[int, LocationMetadata]:
        """Fetch several locations in one query, with each field's newest
        NDVI measurement.

        Args:
            location_ids: Field identifiers.

        Returns:
            Mapping of id to metadata; unknown ids are simply absent.
        """
        if not location_ids:
            return {}
        sql = """
            SELECT f.id, f.name, f.farm_name, f.crop, f.area_ha,
                   f.center_lat, f.center_lon, m.value AS ndvi
            FROM fields f
            LEFT JOIN LATERAL (
                SELECT value FROM ndvi_measurements
                WHERE field_id = f.id
                ORDER BY timestamp DESC
                LIMIT 1
            ) m ON TRUE
            WHERE f.id = ANY($1::int[])
        """
        rows = await self._db.fetch(sql, list(location_ids))
        return {row["id"]: _row_to_location(row) for row in rows}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _row_to_definition(row: Any) -> AlertDefinition:
    """Convert an asyncpg Record from ``alerts`` to an AlertDefinition."""
    return AlertDefinition(
        alert_id=row["id"],
        name=row.get("name") or "",
        location_id=row["field_id"],
        metric_kind=row["alert_type"],
        operator=row["condition_type"],
        threshold=row["threshold_value"],
        threshold2=_as_float(row.get("second_threshold_value")),
        duration_hours=row.get("duration_hours") or 0,
        frequency=row.get("notification_frequency") or "once",
        email_recipients=row.get("notification_emails"),
        phone_numbers=row.get("phone_numbers"),
        email_enabled=bool(row.get("email_notification", True)),
        sms_enabled=bool(row.get("sms_notification", False)),
        whatsapp_enabled=bool(row.get("whatsapp_notification", False)),
        active=bool(row.get("active", True)),
        last_triggered=_as_utc(row.get("last_triggered")),
    )


def _row_to_location(row: Any) -> LocationMetadata:
    return LocationMetadata(
        location_id=row["id"],
        name=row.get("name") or "",
        latitude=_as_float(row.get("center_lat")),
        longitude=_as_float(row.get("center_lon")),
        farm_name=row.get("farm_name"),
        crop=row.get("crop"),
        area_ha=_as_float(row.get("area_ha")),
        ndvi=_as_float(row.get("ndvi")),
    )


def _row_to_check(row: Any) -> AlertCheckRecord:
    return AlertCheckRecord(
        alert_id=row["alert_id"],
        value=float(row["value"]),
        condition_met=bool(row["condition_met"]),
        checked_at=_as_utc(row["timestamp"]),
    )


def _row_to_trigger(row: Any) -> AlertTriggerRecord:
    return AlertTriggerRecord(
        alert_id=row["alert_id"],
        value=float(row["value"]),
        notification_sent=bool(row["notification_sent"]),
        triggered_at=_as_utc(row["timestamp"]),
    )
