"""
Command-line interface for field-alerts.

Runs the alert monitor, bootstraps the schema, and provides diagnostic
commands.

Usage:
    field-alerts run                 # Run the monitor until SIGINT/SIGTERM
    field-alerts run-once --dry-run  # One cycle, log instead of deliver
    field-alerts init-db             # Create tables
    field-alerts health              # Check database connectivity
    field-alerts test-alert 42       # Evaluate one alert without side effects
    field-alerts stats --days 7      # Trigger counts per alert
"""

import asyncio
import signal
import sys

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Field Alerts - weather threshold monitoring for farm fields."""
    setup_logging("DEBUG" if debug else None)

    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.option("--dry-run", is_flag=True, help="Log notifications instead of delivering them")
def run(metrics: bool, metrics_port: int | None, dry_run: bool) -> None:
    """Run the alert monitor."""
    from src.scheduler.service import AlertMonitorService

    async def run_service():
        service = AlertMonitorService(dry_run=dry_run)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.start()

    try:
        asyncio.run(run_service())
    finally:
        from src.observability.tracing import shutdown_tracing

        shutdown_tracing()


@main.command("run-once")
@click.option("--dry-run", is_flag=True, help="Log notifications instead of delivering them")
def run_once(dry_run: bool) -> None:
    """Run a single evaluation cycle and exit."""
    from src.scheduler.service import AlertMonitorService

    async def run_cycle():
        service = AlertMonitorService(dry_run=dry_run)
        return await service.run_once()

    result = asyncio.run(run_cycle())

    click.echo(f"\nCycle {result.cycle_id}" + (" (dry run)" if dry_run else ""))
    click.echo("-" * 40)
    click.echo(f"  Alerts loaded:      {result.alerts_loaded}")
    click.echo(f"  Evaluated:          {result.alerts_evaluated}")
    click.echo(f"  Skipped:            {result.alerts_skipped}")
    click.echo(f"  Conditions met:     {result.conditions_met}")
    click.echo(f"  Suppressed:         {result.notifications_suppressed}")
    click.echo(f"  Notifications sent: {result.notifications_sent}")
    click.echo(f"  Failed:             {result.notifications_failed}")
    click.echo(f"  Elapsed:            {result.elapsed_seconds:.2f}s")
    click.echo("-" * 40)

    if result.errors:
        for error in result.errors:
            click.echo(click.style(f"  ✗ {error}", fg="red"))
        sys.exit(1)
    click.echo(click.style("  ✓ Cycle completed", fg="green"))


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.alerts.repository import AlertRepository
    from src.storage.database import Database

    async def run_init():
        async with Database() as db:
            await AlertRepository(db).create_tables()
        click.echo("Database initialized successfully")

    asyncio.run(run_init())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog

    from src.alerts.schemas import ChannelKind
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        from src.alerts.dispatcher import NotificationConfig
        configured = NotificationConfig().webhook_urls()
        for kind in ChannelKind:
            results[f"{kind.value}_relay_configured"] = kind in configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
        click.echo("-" * 40)

        if results["postgres"]:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        click.echo(click.style("Some services unhealthy!", fg="red"))
        sys.exit(1)

    asyncio.run(check())


@main.command("test-alert")
@click.argument("alert_id", type=int)
def test_alert(alert_id: int) -> None:
    """Evaluate one alert against current conditions (no side effects)."""
    from src.alerts.messages import condition_text
    from src.alerts.schemas import InvalidAlertDefinitionError
    from src.scheduler.service import AlertMonitorService

    async def run_preview():
        service = AlertMonitorService(dry_run=True)
        return await service.preview(alert_id)

    try:
        preview = asyncio.run(run_preview())
    except InvalidAlertDefinitionError as e:
        click.echo(click.style(f"Alert {alert_id} is invalid: {e}", fg="red"))
        sys.exit(1)
    if preview is None:
        click.echo(click.style(f"Alert {alert_id} not found", fg="red"))
        sys.exit(1)

    alert = preview.alert
    click.echo(f"\nAlert {alert.alert_id}: {alert.name or '(unnamed)'}")
    click.echo("-" * 40)
    click.echo(f"  Metric:    {alert.metric_kind.value}")
    click.echo(f"  Condition: {condition_text(alert)}")
    if preview.location is not None:
        click.echo(f"  Location:  {preview.location.display_name}")
    if preview.reason:
        click.echo(click.style(f"  ✗ Not evaluated: {preview.reason}", fg="yellow"))
        sys.exit(2)
    click.echo(f"  Value:     {preview.value:g}")
    if preview.condition_met:
        click.echo(click.style("  ✓ Condition met", fg="green"))
    else:
        click.echo("  Condition not met")


@main.command()
@click.option("--days", default=30, type=click.IntRange(min=1), help="Window in days")
def stats(days: int) -> None:
    """Show trigger counts per alert."""
    from src.alerts.repository import AlertRepository
    from src.storage.database import Database

    async def run_stats():
        async with Database() as db:
            return await AlertRepository(db).get_trigger_stats(days=days)

    rows = asyncio.run(run_stats())

    click.echo(f"\nTriggers in the last {days} day(s)")
    click.echo("-" * 60)
    if not rows:
        click.echo("  No triggers")
        return
    for row in rows:
        last_at = row["last_at"].isoformat() if row["last_at"] else "-"
        click.echo(
            f"  #{row['alert_id']:<6} {(row['name'] or '')[:24]:<24} "
            f"total={row['total']:<4} sent={row['sent']:<4} failed={row['failed']:<4} last={last_at}"
        )


if __name__ == "__main__":
    main()
