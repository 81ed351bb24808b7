"""
Prometheus metrics for monitoring the alert engine.

Defines and exposes metrics for:
- Scheduling cycles and their latency
- Alert evaluation outcomes and skips
- Notification delivery and suppression
- Cache effectiveness and upstream observation calls

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for cycle duration histograms (in seconds)
CYCLE_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the field-alerts engine.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_cycle("success", duration=4.2)
        metrics.record_notification("email", success=True)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Cycles
        self.cycles = Counter(
            "field_alerts_cycles_total",
            "Total scheduling cycles",
            ["status"],  # status: success, failed, overlapped
        )

        self.cycle_duration = Histogram(
            "field_alerts_cycle_duration_seconds",
            "Wall time of a full evaluation cycle",
            buckets=CYCLE_BUCKETS,
        )

        # Evaluation
        self.alerts_evaluated = Counter(
            "field_alerts_alerts_evaluated_total",
            "Alerts whose condition was evaluated",
            ["metric_kind"],
        )

        self.alerts_skipped = Counter(
            "field_alerts_alerts_skipped_total",
            "Alerts skipped in a cycle",
            ["reason"],  # no_coordinates, no_location, no_observation, no_metric, error
        )

        self.conditions_met = Counter(
            "field_alerts_conditions_met_total",
            "Evaluations where the condition held",
            ["metric_kind"],
        )

        # Dispatch
        self.notifications = Counter(
            "field_alerts_notifications_total",
            "Notification sends by channel and outcome",
            ["channel", "status"],  # status: sent, failed
        )

        self.notifications_suppressed = Counter(
            "field_alerts_notifications_suppressed_total",
            "Confirmed triggers that did not notify",
            ["reason"],  # not_persistent, policy, in_flight
        )

        self.dispatches_in_flight = Gauge(
            "field_alerts_dispatches_in_flight",
            "Dispatch tasks currently running",
        )

        # Caches and upstream
        self.cache_requests = Counter(
            "field_alerts_cache_requests_total",
            "Cache lookups by result",
            ["cache", "result"],  # result: hit, miss, stale
        )

        self.cache_entries = Gauge(
            "field_alerts_cache_entries",
            "Entries currently held per cache",
            ["cache"],
        )

        self.observation_fetches = Counter(
            "field_alerts_observation_fetch_total",
            "Upstream observation fetch attempts by outcome",
            ["status"],  # success, timeout, error, rate_limited
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_cycle(self, status: str, duration: float | None = None) -> None:
        """
        Record a finished (or skipped) cycle.

        Args:
            status: success, failed, or overlapped
            duration: Cycle wall time in seconds
        """
        self.cycles.labels(status=status).inc()
        if duration is not None:
            self.cycle_duration.observe(duration)

    def record_evaluated(self, metric_kind: str, condition_met: bool) -> None:
        self.alerts_evaluated.labels(metric_kind=metric_kind).inc()
        if condition_met:
            self.conditions_met.labels(metric_kind=metric_kind).inc()

    def record_skipped(self, reason: str, count: int = 1) -> None:
        if count:
            self.alerts_skipped.labels(reason=reason).inc(count)

    def record_notification(self, channel: str, success: bool) -> None:
        status = "sent" if success else "failed"
        self.notifications.labels(channel=channel, status=status).inc()

    def record_suppressed(self, reason: str) -> None:
        self.notifications_suppressed.labels(reason=reason).inc()

    def record_cache_request(self, cache: str, result: str, count: int = 1) -> None:
        if count:
            self.cache_requests.labels(cache=cache, result=result).inc(count)

    def set_cache_entries(self, cache: str, count: int) -> None:
        self.cache_entries.labels(cache=cache).set(count)

    def record_observation_fetch(self, status: str) -> None:
        self.observation_fetches.labels(status=status).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
