"""Fixtures for scheduler tests: a real engine over in-memory stores."""

from typing import Any

import pytest

from src.alerts.config import AlertConfig
from src.alerts.cooldown import CooldownTracker
from src.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from src.alerts.persistence import PersistenceTracker
from src.scheduler.scheduler import AlertScheduler
from src.weather.cache import LocationCache, WeatherCache
from src.weather.rate_limiter import RateLimiter


class EngineHarness:
    """Scheduler wired to real caches and trackers."""

    def __init__(
        self,
        alert_repo,
        location_repo,
        provider,
        channel,
        clock,
        metrics,
        config: AlertConfig,
        dry_run: bool = False,
        extra_channels=(),
    ) -> None:
        self.repo = alert_repo
        self.location_repo = location_repo
        self.provider = provider
        self.channel = channel
        self.clock = clock
        self.metrics = metrics
        self.config = config

        self.rate_limiter = RateLimiter(
            max_calls=config.rate_limit_max_calls,
            window_seconds=config.rate_limit_window_seconds,
            clock=clock,
        )
        self.weather = WeatherCache(
            provider,
            self.rate_limiter,
            ttl_seconds=config.weather_cache_ttl_seconds,
            stale_grace_seconds=config.weather_stale_grace_seconds,
            fetch_timeout=config.observation_timeout_seconds,
            clock=clock,
            metrics=metrics,
        )
        self.locations = LocationCache(
            location_repo,
            ttl_seconds=config.location_cache_ttl_seconds,
            clock=clock,
            metrics=metrics,
        )
        self.dispatcher = NotificationDispatcher(
            [channel, *extra_channels],
            NotificationConfig(retry_max_attempts=1, retry_delays=[0.0]),
        )
        self.cooldown = CooldownTracker(
            alert_repo, cooldown_seconds=config.dispatch_cooldown_seconds, clock=clock,
        )
        self.persistence = PersistenceTracker(alert_repo, config.check_interval_seconds)
        self.scheduler = AlertScheduler(
            repository=alert_repo,
            location_cache=self.locations,
            weather_cache=self.weather,
            dispatcher=self.dispatcher,
            cooldown=self.cooldown,
            persistence=self.persistence,
            config=config,
            clock=clock,
            metrics=metrics,
            dry_run=dry_run,
        )


@pytest.fixture
def engine_config() -> dict[str, Any]:
    """AlertConfig overrides for a fast, deterministic engine."""
    return {
        "check_interval_seconds": 3600.0,
        "jitter_seconds": 0.0,
        "startup_delay_max_seconds": 0.0,
        "batch_pause_seconds": 0.0,
    }


@pytest.fixture
def build_engine(alert_repo, location_repo, stub_provider, make_channel, clock, metrics, engine_config):
    """Factory: ``build_engine(channel=..., extra_channels=..., dry_run=..., **config_overrides)``."""

    def _build(channel=None, extra_channels=(), dry_run: bool = False, **overrides: Any) -> EngineHarness:
        config = AlertConfig(**{**engine_config, **overrides})
        return EngineHarness(
            alert_repo,
            location_repo,
            stub_provider,
            channel or make_channel(),
            clock,
            metrics,
            config,
            dry_run=dry_run,
            extra_channels=extra_channels,
        )

    return _build
