"""
Alert monitor service - wires the engine together and owns its lifecycle.

Constructs every collaborator once (database pool, repositories, caches,
rate limiter, observation provider, dispatcher, cooldown and persistence
trackers) and hands them to the AlertScheduler by reference.

Features:
- Startup validation of the metric vocabulary mapping
- Bounded retries when the definition store is unreachable
- Graceful shutdown: drain in-flight dispatches, then release pools
- Health reporting
"""

import asyncio
from typing import Any

import structlog

from src.alerts.config import AlertConfig
from src.alerts.cooldown import CooldownTracker
from src.alerts.dispatcher import (
    NotificationConfig,
    NotificationDispatcher,
    build_channels,
)
from src.alerts.persistence import PersistenceTracker
from src.alerts.repository import AlertRepository, LocationRepository
from src.clock import Clock, SystemClock
from src.observability.metrics import get_metrics
from src.scheduler.backoff import ExponentialBackoff, retry_async
from src.scheduler.scheduler import AlertPreview, AlertScheduler, CycleResult
from src.storage.database import Database
from src.weather.cache import LocationCache, WeatherCache
from src.weather.metric_keys import validate_mapping
from src.weather.provider import (
    ObservationConfig,
    ObservationProvider,
    create_provider,
)
from src.weather.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


class AlertMonitorService:
    """
    Long-running service that evaluates alerts and dispatches notifications.

    Usage:
        service = AlertMonitorService()
        await service.start()  # Runs until stopped

        # or a single pass
        result = await AlertMonitorService().run_once()
    """

    def __init__(
        self,
        config: AlertConfig | None = None,
        notification_config: NotificationConfig | None = None,
        observation_config: ObservationConfig | None = None,
        database: Database | None = None,
        provider: ObservationProvider | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        dry_run: bool = False,
    ):
        """
        Initialize the monitor service.

        Args:
            config: Engine configuration (or from env)
            notification_config: Dispatch configuration (or from env)
            observation_config: Provider configuration (or from env)
            database: Database (or create from settings)
            provider: Observation provider (or create from config)
            dispatcher: Notification dispatcher (or build from config)
            clock: Time source shared by every component
            dry_run: Log notifications instead of delivering them and
                leave trigger state untouched

        Raises:
            ConfigurationError: If the metric mapping or provider is invalid,
                or a metric kind has no source.
        """
        self._config = config or AlertConfig()
        notification_config = notification_config or NotificationConfig()
        self._clock = clock or SystemClock()
        self._metrics = get_metrics()
        self._running = False
        self._dry_run = dry_run

        provider = provider or create_provider(observation_config)
        validate_mapping(served_keys=provider.keys)

        self._db = database or Database()
        self._alerts = AlertRepository(self._db)
        self._locations = LocationRepository(self._db)

        self._rate_limiter = RateLimiter(
            max_calls=self._config.rate_limit_max_calls,
            window_seconds=self._config.rate_limit_window_seconds,
            clock=self._clock,
        )
        self._weather_cache = WeatherCache(
            provider=provider,
            rate_limiter=self._rate_limiter,
            ttl_seconds=self._config.weather_cache_ttl_seconds,
            stale_grace_seconds=self._config.weather_stale_grace_seconds,
            fetch_timeout=self._config.observation_timeout_seconds,
            precision=self._config.coordinate_precision,
            max_entries=self._config.cache_max_entries,
            clock=self._clock,
            metrics=self._metrics,
        )
        self._location_cache = LocationCache(
            repository=self._locations,
            ttl_seconds=self._config.location_cache_ttl_seconds,
            stale_grace_seconds=self._config.weather_stale_grace_seconds,
            max_entries=self._config.cache_max_entries,
            clock=self._clock,
            metrics=self._metrics,
        )
        self._dispatcher = dispatcher or NotificationDispatcher(
            build_channels(notification_config, dry_run=dry_run),
            notification_config,
        )
        self._cooldown = CooldownTracker(
            self._alerts,
            cooldown_seconds=self._config.dispatch_cooldown_seconds,
            clock=self._clock,
        )
        self._persistence = PersistenceTracker(
            self._alerts,
            check_interval_seconds=self._config.check_interval_seconds,
        )
        self._scheduler = AlertScheduler(
            repository=self._alerts,
            location_cache=self._location_cache,
            weather_cache=self._weather_cache,
            dispatcher=self._dispatcher,
            cooldown=self._cooldown,
            persistence=self._persistence,
            config=self._config,
            clock=self._clock,
            metrics=self._metrics,
            dry_run=dry_run,
        )

        logger.info(
            "Alert monitor initialized",
            channels=[kind.value for kind in self._dispatcher.channels],
            interval_seconds=self._config.check_interval_seconds,
            dry_run=dry_run,
        )

    @property
    def scheduler(self) -> AlertScheduler:
        return self._scheduler

    @property
    def repository(self) -> AlertRepository:
        return self._alerts

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._running

    async def connect(self) -> None:
        """
        Open the database pool, retrying a few times before giving up.

        Raises:
            Exception: The last connection error once retries are exhausted.
        """
        if self._db.is_connected:
            return
        backoff = ExponentialBackoff(
            base_delay=self._config.init_retry_base_delay_seconds,
            max_delay=30.0,
        )
        await retry_async(
            self._db.connect,
            retries=self._config.init_max_retries,
            backoff=backoff,
            description="Database connection",
        )

    async def start(self) -> None:
        """
        Start the monitor.

        Runs until stop() is called or a fatal error occurs.
        """
        self._running = True
        logger.info("Starting alert monitor")

        try:
            await self.connect()
            await self._scheduler.run_forever()
        except asyncio.CancelledError:
            logger.info("Alert monitor cancelled")
        except Exception as e:
            logger.error("Alert monitor error", error=str(e))
            raise
        finally:
            self._running = False
            await self._cleanup()

    async def stop(self) -> None:
        """Stop the monitor gracefully after the current cycle."""
        logger.info("Stopping alert monitor")
        self._running = False
        self._scheduler.stop()

    async def run_once(self) -> CycleResult:
        """
        Run a single evaluation cycle and shut down.

        Returns:
            The cycle's result.
        """
        try:
            await self.connect()
            return await self._scheduler.run_cycle()
        finally:
            await self._cleanup()

    async def preview(self, alert_id: int) -> AlertPreview | None:
        """
        Evaluate one alert against current conditions without side effects.

        Returns:
            AlertPreview, or None if the alert does not exist.
        """
        try:
            await self.connect()
            alert = await self._alerts.get_definition(alert_id)
            if alert is None:
                return None
            return await self._scheduler.preview(alert)
        finally:
            await self._cleanup()

    async def _cleanup(self) -> None:
        """Drain dispatches, then release transport and database resources."""
        cancelled = await self._scheduler.drain()
        if cancelled:
            logger.warning("Dispatches abandoned at shutdown", cancelled=cancelled)
        await self._dispatcher.close()
        await self._weather_cache.close()
        await self._db.close()
        logger.info("Alert monitor cleaned up")

    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the monitor.

        Returns:
            Dictionary with health status
        """
        return {
            "running": self._running,
            "database_healthy": await self._db.health_check(),
            "cycle_active": self._scheduler.cycle_active,
            "pending_dispatches": self._scheduler.pending_dispatches,
            "weather_cache_entries": len(self._weather_cache),
            "location_cache_entries": len(self._location_cache),
            "observation_calls_remaining": self._rate_limiter.remaining,
            "channels": [kind.value for kind in self._dispatcher.channels],
        }
