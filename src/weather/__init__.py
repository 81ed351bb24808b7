"""Observation sourcing: provider, vocabulary mapping, caches, rate limiting.

Components:
- ObservationProvider / OpenMeteoProvider: Current conditions by coordinate
- PROVIDER_KEYS / validate_mapping / translate_payload: MetricKind <-> provider keys
- TTLCache / WeatherCache / LocationCache: Time-bounded lookups with stale fallback
- RateLimiter: Fixed quota of upstream calls per window
- HTTPClient: Pooled httpx client with retry and backoff
"""

from src.weather.cache import LocationCache, TTLCache, WeatherCache, coordinate_key
from src.weather.http_client import HTTPClient, HTTPClientError, RateLimitError, RetryConfig
from src.weather.metric_keys import (
    PROVIDER_KEYS,
    ConfigurationError,
    translate_payload,
    validate_mapping,
)
from src.weather.provider import (
    ObservationConfig,
    ObservationError,
    ObservationProvider,
    OpenMeteoProvider,
    create_provider,
)
from src.weather.rate_limiter import RateLimiter

__all__ = [
    "ConfigurationError",
    "HTTPClient",
    "HTTPClientError",
    "LocationCache",
    "ObservationConfig",
    "ObservationError",
    "ObservationProvider",
    "OpenMeteoProvider",
    "PROVIDER_KEYS",
    "RateLimitError",
    "RateLimiter",
    "RetryConfig",
    "TTLCache",
    "WeatherCache",
    "coordinate_key",
    "create_provider",
    "translate_payload",
    "validate_mapping",
]
