"""Alert scheduling loop and monitor service.

Components:
- AlertScheduler: Periodic evaluation cycles with jitter and a single-flight guard
- CycleResult / AlertPreview: Per-cycle summary and side-effect-free evaluation
- AlertMonitorService: Wires collaborators and owns startup and shutdown
- ExponentialBackoff / retry_async: Startup retry schedule
"""

from src.scheduler.backoff import ExponentialBackoff, retry_async
from src.scheduler.scheduler import AlertPreview, AlertScheduler, CycleResult
from src.scheduler.service import AlertMonitorService

__all__ = [
    "AlertMonitorService",
    "AlertPreview",
    "AlertScheduler",
    "CycleResult",
    "ExponentialBackoff",
    "retry_async",
]
