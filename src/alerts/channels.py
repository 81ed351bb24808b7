"""Notification channel implementations for alert delivery.

Provides an ABC for notification channels plus two concrete channels: a
relay webhook that hands the rendered message to an external transport
(email/SMS/WhatsApp gateways live behind it), and a logging channel for
dry runs. A CircuitBreaker decorator wraps any channel to prevent
cascading failures when a downstream relay is unhealthy.

Pattern: Decorator (CircuitBreaker wraps any NotificationChannel).
"""

import enum
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from src.alerts.messages import RenderedMessage
from src.alerts.schemas import ChannelKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send on one channel."""

    channel: ChannelKind
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def kind(self) -> ChannelKind:
        """Which recipient list this channel serves."""

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def send(
        self,
        recipients: list[str],
        message: RenderedMessage,
    ) -> DeliveryResult:
        """Deliver a rendered message to the given recipients.

        Args:
            recipients: Addresses or phone numbers for this channel.
            message: Rendered alert text.

        Returns:
            DeliveryResult describing success or the error.
        """

    async def close(self) -> None:
        """Release transport resources. No-op by default."""


class WebhookChannel(NotificationChannel):
    """Delivers messages as JSON POST to a relay endpoint.

    Holds one pooled ``httpx.AsyncClient`` for the channel's lifetime;
    call :meth:`close` on shutdown to release it.
    """

    def __init__(
        self,
        kind: ChannelKind,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._kind = kind
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def kind(self) -> ChannelKind:
        return self._kind

    def _build_payload(self, recipients: list[str], message: RenderedMessage) -> dict:
        return {
            "channel": self._kind.value,
            "recipients": recipients,
            "subject": message.subject,
            "body": message.for_channel(self._kind),
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(
        self,
        recipients: list[str],
        message: RenderedMessage,
    ) -> DeliveryResult:
        payload = self._build_payload(recipients, message)
        try:
            resp = await self._get_client().post(
                self._url,
                json=payload,
                headers=self._headers,
            )
        except httpx.TimeoutException:
            logger.warning("Relay %s timed out (%s)", self._url, self.name)
            return DeliveryResult(self._kind, False, error="timeout")
        except httpx.HTTPError as e:
            logger.warning("Relay %s failed (%s): %s", self._url, self.name, e)
            return DeliveryResult(self._kind, False, error=str(e))

        if not resp.is_success:
            logger.warning(
                "Relay %s returned %d (%s)", self._url, resp.status_code, self.name,
            )
            return DeliveryResult(
                self._kind, False, error=f"HTTP {resp.status_code}",
            )

        message_id = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                message_id = body.get("message_id") or body.get("id")
        except ValueError:
            pass
        return DeliveryResult(
            self._kind,
            True,
            provider_message_id=str(message_id) if message_id is not None else None,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LogChannel(NotificationChannel):
    """Writes messages to the log instead of delivering them."""

    def __init__(self, kind: ChannelKind) -> None:
        self._kind = kind

    @property
    def kind(self) -> ChannelKind:
        return self._kind

    async def send(
        self,
        recipients: list[str],
        message: RenderedMessage,
    ) -> DeliveryResult:
        logger.info(
            "[%s] to %s: %s", self.name, ", ".join(recipients), message.for_channel(self._kind),
        )
        return DeliveryResult(self._kind, True, provider_message_id=f"log-{uuid.uuid4()}")


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationChannel):
    """Wraps a NotificationChannel with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All requests pass through. Consecutive failures tracked.
    - OPEN: Requests rejected immediately. After recovery_timeout, moves
      to HALF_OPEN.
    - HALF_OPEN: Single trial request allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def kind(self) -> ChannelKind:
        return self._channel.kind

    @property
    def state(self) -> CircuitState:
        return self._state

    async def send(
        self,
        recipients: list[str],
        message: RenderedMessage,
    ) -> DeliveryResult:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery trial)",
                    self.name,
                )
            else:
                logger.debug("Circuit breaker %s: OPEN, rejecting send", self.name)
                return DeliveryResult(self.kind, False, error="circuit open")

        result = await self._channel.send(recipients, message)

        if result.success:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "Circuit breaker %s: HALF_OPEN → CLOSED (trial succeeded)",
                    self.name,
                )
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: HALF_OPEN → OPEN (trial failed)",
                    self.name,
                )
            elif self._consecutive_failures >= self._failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: CLOSED → OPEN after %d failures",
                    self.name, self._consecutive_failures,
                )

        return result

    async def close(self) -> None:
        await self._channel.close()
