"""Notification dispatcher orchestrating alert delivery across channels.

Handles retry logic and circuit breaker wrapping. The dispatcher reports
per-channel outcomes; deciding what a failure means for trigger state is
left to the scheduler.

Pattern: Orchestrator, delegates to stateless channels.
"""

import asyncio
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.alerts.channels import (
    CircuitBreaker,
    DeliveryResult,
    LogChannel,
    NotificationChannel,
    WebhookChannel,
)
from src.alerts.messages import RenderedMessage
from src.alerts.schemas import AlertDefinition, ChannelKind

logger = logging.getLogger(__name__)


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum send attempts per channel per alert",
    )
    retry_delays: list[float] = Field(
        default=[1.0, 5.0, 30.0],
        description="Per-attempt delay in seconds before each retry",
    )
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=5.0,
        description="Seconds before circuit breaker tries recovery",
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0.0)

    email_webhook_url: str | None = Field(
        default=None, description="Relay endpoint for the email channel",
    )
    sms_webhook_url: str | None = Field(
        default=None, description="Relay endpoint for the SMS channel",
    )
    whatsapp_webhook_url: str | None = Field(
        default=None, description="Relay endpoint for the WhatsApp channel",
    )
    webhook_auth_token: str | None = Field(
        default=None, description="Bearer token sent to every relay",
    )

    def webhook_urls(self) -> dict[ChannelKind, str]:
        """Configured relay URLs keyed by channel."""
        urls = {
            ChannelKind.EMAIL: self.email_webhook_url,
            ChannelKind.SMS: self.sms_webhook_url,
            ChannelKind.WHATSAPP: self.whatsapp_webhook_url,
        }
        return {kind: url for kind, url in urls.items() if url}


def build_channels(
    config: NotificationConfig,
    dry_run: bool = False,
) -> list[NotificationChannel]:
    """Create channels from configuration.

    Args:
        config: Notification configuration.
        dry_run: Log every message instead of delivering it.

    Returns:
        One channel per configured (or, in dry-run, every) channel kind.
    """
    if dry_run:
        return [LogChannel(kind) for kind in ChannelKind]

    headers = {}
    if config.webhook_auth_token:
        headers["Authorization"] = f"Bearer {config.webhook_auth_token}"

    channels: list[NotificationChannel] = []
    for kind, url in config.webhook_urls().items():
        channels.append(
            WebhookChannel(
                kind=kind,
                url=url,
                headers=headers,
                timeout=config.request_timeout_seconds,
            )
        )
    if not channels:
        logger.warning("No notification relays configured; triggers will not be delivered")
    return channels


class NotificationDispatcher:
    """Orchestrates alert delivery across notification channels.

    Wraps each channel in a CircuitBreaker and retries failed sends
    with the configured per-attempt delays.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        config: NotificationConfig | None = None,
    ) -> None:
        self._config = config or NotificationConfig()

        # Wrap each channel in a circuit breaker
        self._channels: dict[ChannelKind, CircuitBreaker] = {}
        for ch in channels:
            if isinstance(ch, CircuitBreaker):
                self._channels[ch.kind] = ch
            else:
                self._channels[ch.kind] = CircuitBreaker(
                    channel=ch,
                    failure_threshold=self._config.circuit_breaker_threshold,
                    recovery_timeout=self._config.circuit_breaker_recovery_seconds,
                )

    @property
    def channels(self) -> dict[ChannelKind, CircuitBreaker]:
        """Access wrapped channels (for inspection/testing)."""
        return self._channels

    async def dispatch(
        self,
        alert: AlertDefinition,
        message: RenderedMessage,
        delivered: list[DeliveryResult] | None = None,
    ) -> list[DeliveryResult]:
        """Send a rendered alert to each of its configured channels.

        Channels are sent concurrently, so the slowest channel bounds the
        whole dispatch.

        Args:
            alert: Triggered definition (supplies recipients).
            message: Rendered text.
            delivered: Optional list that receives each channel's result as
                soon as that channel finishes. Lets a caller that is
                cancelled mid-dispatch see which channels already went out.

        Returns:
            One DeliveryResult per addressed channel, in channel order.
        """
        collected = delivered if delivered is not None else []

        async def _send(kind: ChannelKind, recipients: list[str]) -> DeliveryResult:
            result = await self.send(kind, recipients, message)
            collected.append(result)
            return result

        results = list(await asyncio.gather(
            *(_send(kind, recipients) for kind, recipients in alert.recipients_by_channel().items())
        ))

        self._record_delivery(alert, results)
        return results

    async def send(
        self,
        channel: ChannelKind,
        recipients: list[str],
        message: RenderedMessage,
    ) -> DeliveryResult:
        """Send to one channel with retries.

        Args:
            channel: Target channel kind.
            recipients: Addresses for that channel.
            message: Rendered text.

        Returns:
            The last attempt's DeliveryResult, or a failure if the channel
            is not configured.
        """
        target = self._channels.get(channel)
        if target is None:
            logger.warning("Channel %s is not configured", channel.value)
            return DeliveryResult(channel, False, error="channel not configured")

        delays = self._config.retry_delays
        max_attempts = self._config.retry_max_attempts
        result = DeliveryResult(channel, False, error="not attempted")

        for attempt in range(max_attempts):
            try:
                result = await target.send(recipients, message)
                if result.success:
                    if attempt > 0:
                        logger.info(
                            "Delivered to %s on attempt %d", channel.value, attempt + 1,
                        )
                    return result
            except Exception as e:
                logger.warning(
                    "Channel %s send error (attempt %d): %s",
                    channel.value, attempt + 1, e,
                )
                result = DeliveryResult(channel, False, error=str(e))

            if result.error == "circuit open":
                break

            # Wait before retry (if not the last attempt)
            if attempt < max_attempts - 1 and delays:
                delay = delays[attempt] if attempt < len(delays) else delays[-1]
                await asyncio.sleep(delay)

        logger.warning(
            "Delivery on channel %s failed: %s", channel.value, result.error,
        )
        return result

    async def close(self) -> None:
        """Release every channel's transport resources."""
        for channel in self._channels.values():
            try:
                await channel.close()
            except Exception as e:
                logger.warning("Failed to close channel %s: %s", channel.name, e)

    def _record_delivery(
        self,
        alert: AlertDefinition,
        results: list[DeliveryResult],
    ) -> None:
        """Log delivery results."""
        successes = [r.channel.value for r in results if r.success]
        failures = [r.channel.value for r in results if not r.success]

        if failures and not successes:
            logger.error(
                "Alert %s failed ALL channels: %s", alert.alert_id, failures,
            )
        elif failures:
            logger.warning(
                "Alert %s partial delivery: ok=%s failed=%s",
                alert.alert_id, successes, failures,
            )
        else:
            logger.debug(
                "Alert %s delivered to all channels: %s", alert.alert_id, successes,
            )
