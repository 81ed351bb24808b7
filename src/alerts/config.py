"""Alert engine configuration.

Controls the scheduling period, batching, cache lifetimes, the upstream
call quota, and the short-window dispatch cooldown. All settings can be
overridden via ``ALERTS_*`` environment variables.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for the alert evaluation and dispatch engine."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling
    check_interval_seconds: float = Field(
        default=1800.0,
        ge=1.0,
        description="Fixed period between evaluation cycles",
    )
    jitter_seconds: float = Field(
        default=180.0,
        ge=0.0,
        description="Maximum random +/- offset applied to each period",
    )
    startup_delay_max_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound of the random delay before the first cycle",
    )

    # Batching
    batch_size: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Alerts evaluated concurrently per batch",
    )
    batch_pause_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between batches to ease upstream pressure",
    )

    # Evaluation
    equal_tolerance: float = Field(
        default=0.1,
        ge=0.0,
        description="Absolute tolerance for the equal_to operator",
    )
    observation_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Bound on a single upstream observation fetch",
    )

    # Caches
    coordinate_precision: int = Field(
        default=3,
        ge=0,
        le=6,
        description="Decimal places used to round coordinates for weather cache keys",
    )
    weather_cache_ttl_seconds: float = Field(default=600.0, gt=0.0)
    weather_stale_grace_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="How long past expiry a weather entry may still be served on upstream failure",
    )
    location_cache_ttl_seconds: float = Field(default=300.0, gt=0.0)
    cache_sweep_interval_seconds: float = Field(default=600.0, gt=0.0)
    cache_max_entries: int = Field(default=1000, ge=1)

    # Upstream quota
    rate_limit_max_calls: int = Field(
        default=100,
        ge=1,
        description="Observation provider calls allowed per window",
    )
    rate_limit_window_seconds: float = Field(default=3600.0, gt=0.0)

    # Dispatch
    dispatch_cooldown_seconds: float = Field(
        default=1800.0,
        ge=0.0,
        description="In-memory suppression window after a successful dispatch",
    )
    dispatch_join_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Bound on waiting for a cycle's dispatches before it is considered complete",
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Time in-flight dispatches get to finish on shutdown",
    )

    # Startup
    init_max_retries: int = Field(default=3, ge=0, le=10)
    init_retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)

    @model_validator(mode="after")
    def _check_jitter(self) -> "AlertConfig":
        if self.jitter_seconds >= self.check_interval_seconds:
            raise ValueError(
                "jitter_seconds must be smaller than check_interval_seconds"
            )
        return self
