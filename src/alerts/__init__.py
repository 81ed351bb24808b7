"""Alert definitions, evaluation policy, and notification delivery.

Components:
- AlertDefinition / LocationMetadata / Observation: Core data model
- AlertCheckRecord / AlertTriggerRecord: Append-only evaluation and trigger logs
- MetricKind / Operator / NotificationFrequency / ChannelKind: Closed vocabularies
- evaluate / evaluate_definition: Stateless condition matching
- PersistenceTracker: Sustained-breach confirmation from the check log
- CooldownTracker: In-memory cooldown plus frequency policy
- AlertRepository / LocationRepository: asyncpg-backed storage access
- NotificationDispatcher / NotificationConfig: Channel fan-out with retries
- WebhookChannel / LogChannel / CircuitBreaker: Delivery channels
- render_message: Notification text
"""

from src.alerts.channels import (
    CircuitBreaker,
    DeliveryResult,
    LogChannel,
    NotificationChannel,
    WebhookChannel,
)
from src.alerts.conditions import evaluate, evaluate_definition
from src.alerts.config import AlertConfig
from src.alerts.cooldown import CooldownTracker, frequency_allows
from src.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from src.alerts.messages import RenderedMessage, render_message
from src.alerts.persistence import PersistenceTracker, required_checks
from src.alerts.repository import AlertRepository, LocationRepository
from src.alerts.schemas import (
    AlertCheckRecord,
    AlertDefinition,
    AlertTriggerRecord,
    ChannelKind,
    InvalidAlertDefinitionError,
    LocationMetadata,
    MetricKind,
    NotificationFrequency,
    Observation,
    Operator,
)

__all__ = [
    "AlertCheckRecord",
    "AlertConfig",
    "AlertDefinition",
    "AlertRepository",
    "AlertTriggerRecord",
    "ChannelKind",
    "CircuitBreaker",
    "CooldownTracker",
    "DeliveryResult",
    "InvalidAlertDefinitionError",
    "LocationMetadata",
    "LocationRepository",
    "LogChannel",
    "MetricKind",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationFrequency",
    "Observation",
    "Operator",
    "PersistenceTracker",
    "RenderedMessage",
    "WebhookChannel",
    "evaluate",
    "evaluate_definition",
    "frequency_allows",
    "render_message",
    "required_checks",
]
