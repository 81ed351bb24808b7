"""
Alert scheduler - the periodic evaluation and dispatch loop.

Each cycle:
1. Loads active alert definitions and resolves their locations.
2. Drops alerts whose location is unknown or has no coordinates.
3. Groups the rest by rounded coordinates and evaluates them in fixed-size
   batches with bounded concurrency and a short pause between batches.
4. Per alert: resolves the observation, evaluates the condition, records a
   check, applies persistence and notification policy, and spawns a
   dispatch task.
5. Waits a bounded time for the cycle's dispatches before reporting.

A failure in one alert is logged and counted; it never aborts the batch or
the cycle. Cycles never overlap: a second run_cycle() while one is running
returns immediately with ``skipped=True``.
"""

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from src.alerts.channels import DeliveryResult
from src.alerts.conditions import evaluate_definition
from src.alerts.config import AlertConfig
from src.alerts.cooldown import CooldownTracker
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.messages import render_message
from src.alerts.persistence import PersistenceTracker
from src.alerts.repository import AlertRepository
from src.alerts.schemas import (
    AlertCheckRecord,
    AlertDefinition,
    AlertTriggerRecord,
    LocationMetadata,
)
from src.clock import Clock, SystemClock
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.weather.cache import LocationCache, WeatherCache
from src.weather.metric_keys import is_field_measured

logger = structlog.get_logger(__name__)


@dataclass
class CycleResult:
    """Summary of one evaluation cycle."""

    cycle_id: str
    started_at: datetime
    skipped: bool = False
    alerts_loaded: int = 0
    alerts_evaluated: int = 0
    alerts_skipped: int = 0
    conditions_met: int = 0
    notifications_suppressed: int = 0
    dispatches_started: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    dispatches_pending: int = 0
    errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


@dataclass
class AlertPreview:
    """What a cycle would see for one alert, without side effects."""

    alert: AlertDefinition
    location: LocationMetadata | None = None
    value: float | None = None
    condition_met: bool = False
    reason: str | None = None


class AlertScheduler:
    """
    Runs evaluation cycles on a fixed period with bounded random jitter.

    All collaborators are injected so caches and cooldown state are shared
    by reference across the evaluation tasks of a cycle.

    Usage:
        scheduler = AlertScheduler(repo, locations, weather, dispatcher,
                                   cooldown, persistence, config)
        result = await scheduler.run_cycle()   # one pass
        await scheduler.run_forever()          # until stop()
    """

    def __init__(
        self,
        repository: AlertRepository,
        location_cache: LocationCache,
        weather_cache: WeatherCache,
        dispatcher: NotificationDispatcher,
        cooldown: CooldownTracker,
        persistence: PersistenceTracker,
        config: AlertConfig | None = None,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
        dry_run: bool = False,
        rng: random.Random | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            repository: Alert definitions and append-only logs.
            location_cache: Field metadata lookups.
            weather_cache: Observation lookups.
            dispatcher: Notification delivery.
            cooldown: Repeat-notification gating.
            persistence: Duration-based confirmation.
            config: Engine configuration.
            clock: Time source.
            metrics: Metrics collector.
            dry_run: Deliver through the dispatcher but leave trigger
                state (trigger log, last_triggered, cooldown) untouched.
            rng: Random source for jitter and startup delay.
        """
        self._repo = repository
        self._locations = location_cache
        self._weather = weather_cache
        self._dispatcher = dispatcher
        self._cooldown = cooldown
        self._persistence = persistence
        self._config = config or AlertConfig()
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics()
        self._dry_run = dry_run
        self._rng = rng or random.Random()
        self._tracer = get_tracer("scheduler")

        self._running = False
        self._cycle_active = False
        self._stop_event = asyncio.Event()
        self._dispatch_tasks: set[asyncio.Task] = set()
        self._last_sweep = self._clock.monotonic()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_active(self) -> bool:
        return self._cycle_active

    @property
    def pending_dispatches(self) -> int:
        return sum(1 for task in self._dispatch_tasks if not task.done())

    # ── Cycle ────────────────────────────────────────────────────────

    async def run_cycle(self) -> CycleResult:
        """
        Run one full evaluation pass.

        Returns:
            CycleResult with counts. ``skipped`` is True if another cycle
            was still running.
        """
        result = CycleResult(
            cycle_id=uuid.uuid4().hex[:12],
            started_at=self._clock.now(),
        )

        # Check-and-set without an await in between: single-flight.
        if self._cycle_active:
            logger.warning("Previous cycle still running, skipping", cycle_id=result.cycle_id)
            self._metrics.record_cycle("overlapped")
            result.skipped = True
            return result
        self._cycle_active = True

        start = self._clock.monotonic()
        status = "success"
        try:
            with structlog.contextvars.bound_contextvars(cycle_id=result.cycle_id):
                with traced(self._tracer, "alerts.cycle", {"cycle_id": result.cycle_id}) as span:
                    await self._run_cycle(result)
                    span.set_attribute("alerts_loaded", result.alerts_loaded)
                    span.set_attribute("alerts_evaluated", result.alerts_evaluated)
                    span.set_attribute("dispatches_started", result.dispatches_started)
        except Exception as e:
            status = "failed"
            result.errors.append(str(e))
            logger.exception("Cycle failed", cycle_id=result.cycle_id, error=str(e))
        finally:
            self._cycle_active = False
            result.elapsed_seconds = self._clock.monotonic() - start
            self._metrics.record_cycle(status, result.elapsed_seconds)

        logger.info(
            "Cycle complete",
            cycle_id=result.cycle_id,
            status=status,
            loaded=result.alerts_loaded,
            evaluated=result.alerts_evaluated,
            skipped=result.alerts_skipped,
            met=result.conditions_met,
            suppressed=result.notifications_suppressed,
            sent=result.notifications_sent,
            failed=result.notifications_failed,
            pending=result.dispatches_pending,
            elapsed_seconds=round(result.elapsed_seconds, 2),
        )
        return result

    async def _run_cycle(self, result: CycleResult) -> None:
        definitions = await self._repo.get_active_definitions()
        result.alerts_loaded = len(definitions)
        if not definitions:
            logger.debug("No active alerts")
            return

        locations = await self._locations.get_many(
            [d.location_id for d in definitions]
        )

        # Group by coordinate key so alerts sharing an upstream call land
        # in the same batch.
        groups: dict[str, list[tuple[AlertDefinition, LocationMetadata]]] = {}
        for definition in definitions:
            location = locations.get(definition.location_id)
            if location is None:
                self._skip(result, "no_location")
                logger.debug(
                    "Location not found, skipping alert",
                    alert_id=definition.alert_id,
                    location_id=definition.location_id,
                )
                continue
            if not location.has_coordinates:
                self._skip(result, "no_coordinates")
                logger.debug(
                    "Location has no coordinates, skipping alert",
                    alert_id=definition.alert_id,
                    location_id=definition.location_id,
                )
                continue
            key = self._weather.key_for(location.latitude, location.longitude)
            groups.setdefault(key, []).append((definition, location))

        ordered = [pair for group in groups.values() for pair in group]
        size = self._config.batch_size
        batches = [ordered[i:i + size] for i in range(0, len(ordered), size)]

        pending: list[asyncio.Task] = []
        for index, batch in enumerate(batches):
            if index and self._config.batch_pause_seconds > 0:
                await asyncio.sleep(self._config.batch_pause_seconds)
            await asyncio.gather(
                *(
                    self._evaluate_safely(definition, location, result, pending)
                    for definition, location in batch
                )
            )

        await self._join(pending, result)

    async def _evaluate_safely(
        self,
        alert: AlertDefinition,
        location: LocationMetadata,
        result: CycleResult,
        pending: list[asyncio.Task],
    ) -> None:
        try:
            with traced(
                self._tracer,
                "alerts.evaluate",
                {"alert_id": alert.alert_id, "metric_kind": alert.metric_kind.value},
            ):
                await self._evaluate(alert, location, result, pending)
        except Exception as e:
            self._skip(result, "error")
            result.errors.append(f"alert {alert.alert_id}: {e}")
            logger.exception("Alert evaluation failed", alert_id=alert.alert_id, error=str(e))

    async def _evaluate(
        self,
        alert: AlertDefinition,
        location: LocationMetadata,
        result: CycleResult,
        pending: list[asyncio.Task],
    ) -> None:
        value, reason = await self._resolve_value(alert, location)
        if value is None:
            self._skip(result, reason)
            logger.debug(
                "No reading available, skipping alert",
                alert_id=alert.alert_id,
                metric_kind=alert.metric_kind.value,
                reason=reason,
            )
            return

        met = evaluate_definition(alert, value, self._config.equal_tolerance)

        # Recorded before the persistence check so the window includes it.
        await self._repo.record_check(
            AlertCheckRecord(
                alert_id=alert.alert_id,
                value=value,
                condition_met=met,
                checked_at=self._clock.now(),
            )
        )
        result.alerts_evaluated += 1
        self._metrics.record_evaluated(alert.metric_kind.value, met)
        if not met:
            return
        result.conditions_met += 1

        if not await self._persistence.is_definition_persistent(alert):
            self._suppress(result, alert, "not_persistent")
            return
        if not await self._cooldown.should_notify(alert):
            self._suppress(result, alert, "policy")
            return
        if not self._cooldown.try_claim(alert.alert_id):
            self._suppress(result, alert, "in_flight")
            return

        task = asyncio.create_task(
            self._dispatch(alert, location, value),
            name=f"dispatch_alert_{alert.alert_id}",
        )
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        pending.append(task)
        result.dispatches_started += 1

    async def _resolve_value(
        self,
        alert: AlertDefinition,
        location: LocationMetadata,
    ) -> tuple[float | None, str]:
        """Current reading for the alert's metric, or None with a skip reason.

        Field-measured kinds come from the location row; weather kinds go
        through the observation cache.
        """
        if is_field_measured(alert.metric_kind):
            return location.measurement_for(alert.metric_kind), "no_metric"

        observation = await self._weather.get_observation(
            location.latitude, location.longitude,
        )
        if observation is None:
            return None, "no_observation"
        return observation.value_for(alert.metric_kind), "no_metric"

    async def _dispatch(
        self,
        alert: AlertDefinition,
        location: LocationMetadata,
        value: float,
    ) -> bool:
        """
        Deliver one confirmed trigger and record the outcome.

        Cooldown and last_triggered advance only if at least one channel
        succeeded. If the task is cancelled (shutdown drain) after some
        channel already delivered, that delivery is still recorded before
        the cancellation propagates. The in-flight claim is always released.

        Returns:
            True if any channel delivered.
        """
        deliveries: list[DeliveryResult] = []
        self._metrics.dispatches_in_flight.inc()
        try:
            with traced(self._tracer, "alerts.dispatch", {"alert_id": alert.alert_id}):
                message = render_message(alert, location, value)
                await self._dispatcher.dispatch(alert, message, deliveries)
                return await self._record_outcome(alert, location, value, deliveries)
        except asyncio.CancelledError:
            if any(d.success for d in deliveries):
                logger.warning(
                    "Dispatch cancelled after partial delivery",
                    alert_id=alert.alert_id,
                    delivered=[d.channel.value for d in deliveries if d.success],
                )
                await self._record_outcome(alert, location, value, deliveries)
            raise
        except Exception as e:
            logger.exception("Dispatch failed", alert_id=alert.alert_id, error=str(e))
            return False
        finally:
            self._cooldown.release(alert.alert_id)
            self._metrics.dispatches_in_flight.dec()

    async def _record_outcome(
        self,
        alert: AlertDefinition,
        location: LocationMetadata,
        value: float,
        deliveries: list[DeliveryResult],
    ) -> bool:
        for delivery in deliveries:
            self._metrics.record_notification(delivery.channel.value, delivery.success)
        sent = any(d.success for d in deliveries)

        if self._dry_run:
            logger.info("Dry run, trigger state unchanged", alert_id=alert.alert_id, sent=sent)
            return sent

        triggered_at = self._clock.now()
        if sent:
            self._cooldown.mark_sent(alert.alert_id)
        await self._repo.record_trigger(
            AlertTriggerRecord(
                alert_id=alert.alert_id,
                value=value,
                notification_sent=sent,
                triggered_at=triggered_at,
            )
        )
        if sent:
            await self._repo.update_last_triggered(alert.alert_id, triggered_at)
            logger.info(
                "Alert notification sent",
                alert_id=alert.alert_id,
                location=location.display_name,
                value=value,
                channels=[d.channel.value for d in deliveries if d.success],
            )
        else:
            logger.warning(
                "Alert notification failed on every channel",
                alert_id=alert.alert_id,
                errors=[d.error for d in deliveries],
            )
        return sent

    async def _join(self, pending: list[asyncio.Task], result: CycleResult) -> None:
        """Wait a bounded time for this cycle's dispatches and tally them."""
        if not pending:
            return
        done, not_done = await asyncio.wait(
            pending, timeout=self._config.dispatch_join_timeout_seconds,
        )
        for task in done:
            if not task.cancelled() and task.result():
                result.notifications_sent += 1
            else:
                result.notifications_failed += 1
        result.dispatches_pending = len(not_done)
        if not_done:
            logger.warning(
                "Dispatches still running after join timeout",
                pending=len(not_done),
                timeout=self._config.dispatch_join_timeout_seconds,
            )

    def _skip(self, result: CycleResult, reason: str) -> None:
        result.alerts_skipped += 1
        self._metrics.record_skipped(reason)

    def _suppress(self, result: CycleResult, alert: AlertDefinition, reason: str) -> None:
        result.notifications_suppressed += 1
        self._metrics.record_suppressed(reason)
        logger.debug("Notification suppressed", alert_id=alert.alert_id, reason=reason)

    # ── Preview ──────────────────────────────────────────────────────

    async def preview(self, alert: AlertDefinition) -> AlertPreview:
        """
        Resolve an alert's location and observation and evaluate it.

        Records nothing and dispatches nothing.
        """
        preview = AlertPreview(alert=alert)
        preview.location = await self._locations.get(alert.location_id)
        if preview.location is None:
            preview.reason = "location not found"
            return preview
        if not preview.location.has_coordinates:
            preview.reason = "location has no coordinates"
            return preview

        preview.value, reason = await self._resolve_value(alert, preview.location)
        if preview.value is None:
            if reason == "no_observation":
                preview.reason = "no observation available"
            else:
                preview.reason = f"no {alert.metric_kind.value} reading"
            return preview
        preview.condition_met = evaluate_definition(
            alert, preview.value, self._config.equal_tolerance,
        )
        return preview

    # ── Loop ─────────────────────────────────────────────────────────

    def next_delay(self) -> float:
        """Fixed period plus uniform jitter in [-jitter, +jitter]."""
        jitter = self._config.jitter_seconds
        return max(
            0.0,
            self._config.check_interval_seconds + self._rng.uniform(-jitter, jitter),
        )

    async def run_forever(self) -> None:
        """
        Run cycles until stop() is called.

        The first cycle waits a random startup delay. The period is measured
        from the start of each cycle on the monotonic clock.
        """
        self._running = True
        self._stop_event.clear()

        startup_delay = self._rng.uniform(0.0, self._config.startup_delay_max_seconds)
        logger.info(
            "Scheduler started",
            interval_seconds=self._config.check_interval_seconds,
            jitter_seconds=self._config.jitter_seconds,
            startup_delay_seconds=round(startup_delay, 1),
        )

        try:
            if await self._wait(startup_delay):
                return
            while self._running:
                started = self._clock.monotonic()
                await self.run_cycle()
                await self.sweep_if_due()
                elapsed = self._clock.monotonic() - started
                if await self._wait(max(0.0, self.next_delay() - elapsed)):
                    return
        finally:
            self._running = False
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Ask run_forever() to return after the current cycle."""
        self._running = False
        self._stop_event.set()

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if stop() was called meanwhile."""
        if self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def sweep_if_due(self) -> bool:
        """Reclaim expired cache and cooldown entries on the sweep interval."""
        now = self._clock.monotonic()
        if now - self._last_sweep < self._config.cache_sweep_interval_seconds:
            return False
        self._last_sweep = now
        weather = await self._weather.sweep()
        locations = await self._locations.sweep()
        cooldowns = self._cooldown.sweep()
        logger.debug(
            "Swept expired entries",
            weather=weather,
            locations=locations,
            cooldowns=cooldowns,
        )
        return True

    async def drain(self, grace_seconds: float | None = None) -> int:
        """
        Let in-flight dispatches finish, cancelling any still running after
        the grace period.

        Returns:
            Number of dispatches cancelled.
        """
        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        tasks = [task for task in self._dispatch_tasks if not task.done()]
        if not tasks:
            return 0

        logger.info("Draining dispatches", pending=len(tasks), grace_seconds=grace)
        _, not_done = await asyncio.wait(tasks, timeout=grace)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            logger.warning("Cancelled dispatches at shutdown", cancelled=len(not_done))
        return len(not_done)
