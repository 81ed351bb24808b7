"""Observation providers.

A provider answers "what are current conditions at (latitude, longitude)"
with a flat map of provider key to numeric value. Keys the provider cannot
supply are simply absent.

Built in:
- OpenMeteoProvider: Open-Meteo forecast API (no key required). Current
  temperature and wind speed plus today's precipitation sum.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.weather.http_client import HTTPClient, HTTPClientError, RetryConfig
from src.weather.metric_keys import ConfigurationError

logger = logging.getLogger(__name__)


class ObservationError(Exception):
    """The provider could not produce an observation."""


class ObservationConfig(BaseSettings):
    """Configuration for the upstream observation provider."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    provider: str = Field(
        default="open-meteo",
        description="Observation provider name",
    )
    open_meteo_url: str = Field(
        default="https://api.open-meteo.com/v1/forecast",
    )
    max_retries: int = Field(
        default=1,
        ge=0,
        le=5,
        description="HTTP retries per fetch; the whole fetch is still bounded by the engine timeout",
    )
    request_timeout_seconds: float = Field(default=4.0, gt=0.0)


class ObservationProvider(ABC):
    """Abstract base for current-conditions sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in logs and metrics."""

    @property
    @abstractmethod
    def keys(self) -> frozenset[str]:
        """Payload keys this provider can return."""

    @abstractmethod
    async def fetch(self, latitude: float, longitude: float) -> dict[str, Any]:
        """Get current conditions for a coordinate.

        Returns:
            Map of provider key to value.

        Raises:
            ObservationError: On transport failure or malformed payload.
        """

    async def close(self) -> None:
        """Release pooled resources. No-op by default."""


class OpenMeteoProvider(ObservationProvider):
    """Current conditions from the Open-Meteo forecast endpoint."""

    CURRENT_VARIABLES = ("temperature_2m", "wind_speed_10m")
    DAILY_VARIABLES = ("precipitation_sum",)

    def __init__(
        self,
        base_url: str = "https://api.open-meteo.com/v1/forecast",
        http_client: HTTPClient | None = None,
        timeout: float = 4.0,
        max_retries: int = 1,
    ) -> None:
        self._base_url = base_url
        self._http = http_client or HTTPClient(
            retry_config=RetryConfig(max_retries=max_retries),
            timeout=timeout,
        )

    @property
    def name(self) -> str:
        return "open-meteo"

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self.CURRENT_VARIABLES + self.DAILY_VARIABLES)

    def _build_params(self, latitude: float, longitude: float) -> dict[str, Any]:
        return {
            "latitude": latitude,
            "longitude": longitude,
            "current": ",".join(self.CURRENT_VARIABLES),
            "daily": ",".join(self.DAILY_VARIABLES),
            "forecast_days": 1,
            "wind_speed_unit": "kmh",
            "timezone": "auto",
        }

    async def fetch(self, latitude: float, longitude: float) -> dict[str, Any]:
        try:
            response = await self._http.get(
                self._base_url,
                params=self._build_params(latitude, longitude),
            )
            data = response.json()
        except HTTPClientError as e:
            raise ObservationError(f"Open-Meteo request failed: {e}") from e
        except ValueError as e:
            raise ObservationError(f"Open-Meteo returned invalid JSON: {e}") from e

        return self._parse(data)

    def _parse(self, data: Any) -> dict[str, Any]:
        """Flatten ``current`` and the first ``daily`` entry into one map."""
        if not isinstance(data, dict):
            raise ObservationError("Open-Meteo payload is not an object")

        values: dict[str, Any] = {}

        current = data.get("current") or {}
        if isinstance(current, dict):
            for key in self.CURRENT_VARIABLES:
                if key in current:
                    values[key] = current[key]

        daily = data.get("daily") or {}
        if isinstance(daily, dict):
            for key in self.DAILY_VARIABLES:
                series = daily.get(key)
                if isinstance(series, list) and series:
                    values[key] = series[0]

        if not values:
            raise ObservationError("Open-Meteo payload contained no readings")
        return values

    async def close(self) -> None:
        await self._http.close()


def create_provider(config: ObservationConfig | None = None) -> ObservationProvider:
    """Build the configured provider.

    Raises:
        ConfigurationError: If the provider name is unknown.
    """
    config = config or ObservationConfig()
    if config.provider == "open-meteo":
        return OpenMeteoProvider(
            base_url=config.open_meteo_url,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
        )
    raise ConfigurationError(f"Unknown observation provider {config.provider!r}")
