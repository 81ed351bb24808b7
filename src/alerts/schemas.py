"""Schema definitions for alert definitions, locations, and the check/trigger logs.

``AlertDefinition`` maps to the ``alerts`` table, ``LocationMetadata`` to the
externally-owned ``fields`` table. ``AlertCheckRecord`` and
``AlertTriggerRecord`` are the two append-only logs written by the engine.
``Observation`` is an in-memory snapshot and is never persisted.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class InvalidAlertDefinitionError(ValueError):
    """A stored alert definition violates the definition invariants."""


class MetricKind(str, Enum):
    """Observed metric an alert watches. Values match the storage vocabulary."""

    TEMPERATURE = "temperature"
    RAINFALL = "rainfall"
    VEGETATION_INDEX = "ndvi"
    WIND_SPEED = "wind"

    @classmethod
    def parse(cls, value: "str | MetricKind") -> "MetricKind":
        """Parse a stored or client-supplied metric name.

        Raises:
            InvalidAlertDefinitionError: If the name is not recognised.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        kind = _METRIC_ALIASES.get(normalized)
        if kind is None:
            raise InvalidAlertDefinitionError(f"Unknown metric kind {value!r}")
        return kind


_METRIC_ALIASES: dict[str, MetricKind] = {
    "temperature": MetricKind.TEMPERATURE,
    "rainfall": MetricKind.RAINFALL,
    "ndvi": MetricKind.VEGETATION_INDEX,
    "vegetation_index": MetricKind.VEGETATION_INDEX,
    "wind": MetricKind.WIND_SPEED,
    "windspeed": MetricKind.WIND_SPEED,
    "wind_speed": MetricKind.WIND_SPEED,
}


class Operator(str, Enum):
    """Comparison applied between an observed value and the threshold(s)."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUAL_TO = "equal_to"
    BETWEEN = "between"

    @classmethod
    def parse(cls, value: "str | Operator") -> "Operator":
        """Parse either the camelCase storage name or the snake_case name.

        Raises:
            InvalidAlertDefinitionError: If the name is not recognised.
        """
        if isinstance(value, cls):
            return value
        op = _OPERATOR_ALIASES.get(str(value).strip())
        if op is None:
            raise InvalidAlertDefinitionError(f"Unknown operator {value!r}")
        return op


_OPERATOR_ALIASES: dict[str, Operator] = {
    "greaterThan": Operator.GREATER_THAN,
    "greater_than": Operator.GREATER_THAN,
    "lessThan": Operator.LESS_THAN,
    "less_than": Operator.LESS_THAN,
    "equals": Operator.EQUAL_TO,
    "equal_to": Operator.EQUAL_TO,
    "between": Operator.BETWEEN,
}


class NotificationFrequency(str, Enum):
    """How often a persistently-met alert may notify again."""

    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"


class ChannelKind(str, Enum):
    """Delivery channels an alert can address."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(address: str) -> bool:
    """Check ``local@domain.tld`` shape."""
    return bool(_EMAIL_RE.match(address))


def is_valid_phone_number(number: str) -> bool:
    """Accept numbers carrying 9-15 digits once formatting is stripped."""
    digits = re.sub(r"\D", "", number)
    return 9 <= len(digits) <= 15


def split_recipients(value: str | list[str] | None) -> list[str]:
    """Split a comma-separated recipient column into a clean list."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [item.strip() for item in value if item and item.strip()]


@dataclass
class AlertDefinition:
    """An active rule read from the ``alerts`` table.

    Attributes:
        alert_id: Primary key of the alert.
        name: Display name used in notification subjects.
        location_id: Field/location the alert watches.
        metric_kind: Observed metric.
        operator: Comparison operator.
        threshold: First (or only) threshold.
        threshold2: Upper bound, required iff operator is ``between``.
        duration_hours: Minimum persistence; 0 or 1 means immediate.
        frequency: Repeat-notification policy.
        email_recipients: Addresses for the email channel.
        phone_numbers: Numbers for SMS and WhatsApp.
        email_enabled: Whether email delivery is requested.
        sms_enabled: Whether SMS delivery is requested.
        whatsapp_enabled: Whether WhatsApp delivery is requested.
        active: Only active definitions are evaluated.
        last_triggered: When a notification last went out, if ever.
    """

    alert_id: int
    location_id: int
    metric_kind: MetricKind
    operator: Operator
    threshold: float
    name: str = ""
    threshold2: float | None = None
    duration_hours: int = 0
    frequency: NotificationFrequency = NotificationFrequency.ONCE
    email_recipients: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    email_enabled: bool = True
    sms_enabled: bool = False
    whatsapp_enabled: bool = False
    active: bool = True
    last_triggered: datetime | None = None

    def __post_init__(self) -> None:
        self.metric_kind = MetricKind.parse(self.metric_kind)
        self.operator = Operator.parse(self.operator)
        try:
            self.frequency = NotificationFrequency(self.frequency)
        except ValueError:
            raise InvalidAlertDefinitionError(
                f"Invalid frequency {self.frequency!r}. "
                f"Must be one of: {[f.value for f in NotificationFrequency]}"
            ) from None

        self.threshold = float(self.threshold)
        if self.threshold2 is not None:
            self.threshold2 = float(self.threshold2)

        if self.operator is Operator.BETWEEN:
            if self.threshold2 is None:
                raise InvalidAlertDefinitionError(
                    f"Alert {self.alert_id}: 'between' requires a second threshold"
                )
            if self.threshold > self.threshold2:
                raise InvalidAlertDefinitionError(
                    f"Alert {self.alert_id}: threshold {self.threshold} "
                    f"exceeds second threshold {self.threshold2}"
                )

        if self.duration_hours is None:
            self.duration_hours = 0
        if self.duration_hours < 0:
            raise InvalidAlertDefinitionError(
                f"Alert {self.alert_id}: negative duration_hours"
            )

        self.email_recipients = split_recipients(self.email_recipients)
        self.phone_numbers = split_recipients(self.phone_numbers)

        bad_emails = [e for e in self.email_recipients if not is_valid_email(e)]
        if bad_emails:
            raise InvalidAlertDefinitionError(
                f"Alert {self.alert_id}: invalid email addresses: {', '.join(bad_emails)}"
            )
        bad_numbers = [n for n in self.phone_numbers if not is_valid_phone_number(n)]
        if bad_numbers:
            raise InvalidAlertDefinitionError(
                f"Alert {self.alert_id}: invalid phone numbers: {', '.join(bad_numbers)}"
            )

        if not self.recipients_by_channel():
            raise InvalidAlertDefinitionError(
                f"Alert {self.alert_id}: at least one recipient is required"
            )

    @property
    def requires_persistence(self) -> bool:
        """Durations of 0 or 1 hour trigger on the first met check."""
        return self.duration_hours > 1

    def recipients_by_channel(self) -> dict[ChannelKind, list[str]]:
        """Enabled channels mapped to their recipients, empty lists omitted."""
        recipients: dict[ChannelKind, list[str]] = {}
        if self.email_enabled and self.email_recipients:
            recipients[ChannelKind.EMAIL] = list(self.email_recipients)
        if self.sms_enabled and self.phone_numbers:
            recipients[ChannelKind.SMS] = list(self.phone_numbers)
        if self.whatsapp_enabled and self.phone_numbers:
            recipients[ChannelKind.WHATSAPP] = list(self.phone_numbers)
        return recipients


@dataclass(frozen=True)
class LocationMetadata:
    """Read-only view of a monitored field.

    Coordinates may be missing; such locations are skipped, never errored.
    ``ndvi`` is the newest stored vegetation-index measurement, if any.
    """

    location_id: int
    name: str
    latitude: float | None = None
    longitude: float | None = None
    farm_name: str | None = None
    crop: str | None = None
    area_ha: float | None = None
    ndvi: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def display_name(self) -> str:
        return self.name or f"Field #{self.location_id}"

    def measurement_for(self, kind: MetricKind) -> float | None:
        """Field-level reading for ``kind``, or None if none is stored."""
        if kind is MetricKind.VEGETATION_INDEX:
            return self.ndvi
        return None


@dataclass(frozen=True)
class Observation:
    """Point-in-time metric readings for one coordinate key."""

    location_key: str
    values: dict[MetricKind, float]
    observed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def value_for(self, kind: MetricKind) -> float | None:
        """Return the reading for ``kind``, or None if absent or NaN."""
        value = self.values.get(kind)
        if value is None or math.isnan(value):
            return None
        return value


@dataclass(frozen=True)
class AlertCheckRecord:
    """One evaluation of one alert. Append-only."""

    alert_id: int
    value: float
    condition_met: bool
    checked_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(frozen=True)
class AlertTriggerRecord:
    """One confirmed trigger and whether any channel delivered it. Append-only."""

    alert_id: int
    value: float
    notification_sent: bool
    triggered_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
