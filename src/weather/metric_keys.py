"""Bidirectional mapping between alert metric kinds and provider payload keys.

Storage speaks ``temperature`` / ``rainfall`` / ``ndvi`` / ``wind``; the
observation provider speaks its own variable names. Every MetricKind must
map to exactly one key. Weather kinds are served by the observation
provider; field-measured kinds (NDVI) come from the latest measurement
stored per field. :func:`validate_mapping` runs at startup so a gap fails
the process instead of silently skipping alerts later.
"""

import math
from typing import Any

from src.alerts.schemas import MetricKind


class ConfigurationError(Exception):
    """Startup configuration is unusable."""


PROVIDER_KEYS: dict[MetricKind, str] = {
    MetricKind.TEMPERATURE: "temperature_2m",
    MetricKind.RAINFALL: "precipitation_sum",
    MetricKind.WIND_SPEED: "wind_speed_10m",
    MetricKind.VEGETATION_INDEX: "ndvi",
}

METRIC_KINDS_BY_KEY: dict[str, MetricKind] = {
    key: kind for kind, key in PROVIDER_KEYS.items()
}

# Read from the field store, never from the observation provider.
FIELD_MEASURED_KINDS: frozenset[MetricKind] = frozenset({MetricKind.VEGETATION_INDEX})


def validate_mapping(
    mapping: dict[MetricKind, str] | None = None,
    served_keys: frozenset[str] | None = None,
) -> None:
    """Check the mapping covers every MetricKind with distinct keys.

    Args:
        mapping: Kind to key table (defaults to PROVIDER_KEYS).
        served_keys: Keys the configured observation provider returns.
            When given, every kind not measured per field must map to
            one of them.

    Raises:
        ConfigurationError: If a kind is unmapped, two kinds share a key,
            or no source can serve a kind.
    """
    mapping = PROVIDER_KEYS if mapping is None else mapping

    missing = [kind.value for kind in MetricKind if not mapping.get(kind)]
    if missing:
        raise ConfigurationError(f"Metric kinds without a provider key: {missing}")

    keys = list(mapping.values())
    if len(set(keys)) != len(keys):
        raise ConfigurationError("Provider keys must be unique per metric kind")

    if served_keys is not None:
        unserved = [
            kind.value for kind in MetricKind
            if kind not in FIELD_MEASURED_KINDS and mapping[kind] not in served_keys
        ]
        if unserved:
            raise ConfigurationError(f"No source serves metric kinds: {unserved}")


def is_field_measured(kind: MetricKind) -> bool:
    return kind in FIELD_MEASURED_KINDS


def to_provider_key(kind: MetricKind) -> str:
    return PROVIDER_KEYS[kind]


def from_provider_key(key: str) -> MetricKind | None:
    return METRIC_KINDS_BY_KEY.get(key)


def translate_payload(payload: dict[str, Any]) -> dict[MetricKind, float]:
    """Convert a provider-key map into MetricKind readings.

    Unknown keys, non-numeric values, and NaN are dropped; a dropped or
    absent metric is a MISS for alerts watching it, never an error.
    """
    values: dict[MetricKind, float] = {}
    for key, raw in payload.items():
        kind = METRIC_KINDS_BY_KEY.get(key)
        if kind is None or raw is None or isinstance(raw, bool):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isnan(value):
            continue
        values[kind] = value
    return values
