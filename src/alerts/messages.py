"""Notification message rendering.

Turns a triggered alert, its location, and the observed value into the
text handed to notification channels. Channels decide how to transport it;
SMS-style channels use the short form.
"""

from dataclasses import dataclass

from src.alerts.schemas import (
    AlertDefinition,
    ChannelKind,
    LocationMetadata,
    MetricKind,
    Operator,
)

UNIT_SUFFIXES: dict[MetricKind, str] = {
    MetricKind.TEMPERATURE: "°C",
    MetricKind.RAINFALL: "mm",
    MetricKind.VEGETATION_INDEX: "",
    MetricKind.WIND_SPEED: "km/h",
}

METRIC_LABELS: dict[MetricKind, str] = {
    MetricKind.TEMPERATURE: "Temperature",
    MetricKind.RAINFALL: "Rainfall",
    MetricKind.VEGETATION_INDEX: "NDVI",
    MetricKind.WIND_SPEED: "Wind speed",
}

SHORT_FORM_CHANNELS = frozenset({ChannelKind.SMS, ChannelKind.WHATSAPP})


@dataclass(frozen=True)
class RenderedMessage:
    """Text for one triggered alert."""

    subject: str
    body: str
    short_body: str

    def for_channel(self, channel: ChannelKind) -> str:
        return self.short_body if channel in SHORT_FORM_CHANNELS else self.body


def _fmt(value: float) -> str:
    return f"{value:g}"


def condition_text(alert: AlertDefinition) -> str:
    """Human-readable comparison, e.g. ``above 35°C``."""
    unit = UNIT_SUFFIXES[alert.metric_kind]
    t1 = f"{_fmt(alert.threshold)}{unit}"
    if alert.operator is Operator.GREATER_THAN:
        return f"above {t1}"
    if alert.operator is Operator.LESS_THAN:
        return f"below {t1}"
    if alert.operator is Operator.EQUAL_TO:
        return f"equal to {t1}"
    return f"between {t1} and {_fmt(alert.threshold2)}{unit}"


def render_message(
    alert: AlertDefinition,
    location: LocationMetadata,
    value: float,
) -> RenderedMessage:
    """Render the notification for a confirmed trigger.

    Args:
        alert: Triggered definition.
        location: Location the reading belongs to.
        value: Observed value that met the condition.

    Returns:
        RenderedMessage with subject, full body, and short body.
    """
    unit = UNIT_SUFFIXES[alert.metric_kind]
    label = METRIC_LABELS[alert.metric_kind]
    title = alert.name or f"{label} alert"
    condition = condition_text(alert)
    current = f"{_fmt(round(value, 2))}{unit}"

    lines = [
        f"ALERT: {title}",
        "",
        f'Field "{location.display_name}" has reported {label} {condition}.',
        f"Current value: {current}",
    ]
    if alert.requires_persistence:
        lines.append(
            f"This condition has persisted for at least {alert.duration_hours} hour(s)."
        )

    details = []
    if location.farm_name:
        details.append(f"- Farm: {location.farm_name}")
    if location.crop:
        details.append(f"- Crop: {location.crop}")
    if location.area_ha is not None:
        details.append(f"- Area: {_fmt(location.area_ha)} hectares")
    if details:
        lines.extend(["", "Field details:", *details])

    lines.extend(["", "This is an automated alert."])

    short_body = (
        f"Alert: {title}. {location.display_name}: {label} {current} ({condition})"
    )

    return RenderedMessage(
        subject=f"ALERT: {title}",
        body="\n".join(lines),
        short_body=short_body,
    )
