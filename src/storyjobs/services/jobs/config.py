"""Background job policy: timing, concurrency, retry and alerting configuration.

The effective policy is built in three layers, lowest precedence first:

1. Compiled defaults (``DEFAULT_CONFIG``)
2. Environment tier overlay (development / production / test, from ``APP_ENV``)
3. Explicit environment variable overrides carried by ``Settings``

All durations are in seconds.
"""

from typing import Any, Literal

import structlog
from pydantic import BaseModel

from storyjobs.core.config import Settings
from storyjobs.models.job import JobType

logger = structlog.get_logger(__name__)

ResourceLevel = Literal["low", "medium", "high"]


class ResourceThresholds(BaseModel):
    cpu: float = 80.0  # percentage
    memory: float = 85.0  # percentage
    queue: int = 50  # jobs


class AlertThresholds(BaseModel):
    queue_depth: float = 20
    error_rate: float = 10.0  # percentage
    processing_time: float = 10 * 60
    wait_time: float = 5 * 60


class HealthThresholds(BaseModel):
    """Cutoffs used by the monitor to grade system health."""

    queue_depth_warning: int = 20
    queue_depth_critical: int = 50
    success_rate_warning: float = 90.0
    success_rate_critical: float = 80.0
    max_pending_wait: float = 30 * 60
    slow_processing: float = 10 * 60
    stuck_after: float = 30 * 60


class ResourceRequirements(BaseModel):
    cpu: ResourceLevel
    memory: ResourceLevel
    network: ResourceLevel


class JobTypeConfig(BaseModel):
    """Per-type policy.

    ``max_retries`` and ``estimated_duration`` drive behaviour. ``timeout``,
    ``priority`` and ``concurrency_limit`` are advisory: they are reported in the
    config summary, and the worker bounds every run with the flat ``max_run_time``.
    """

    timeout: float
    max_retries: int
    priority: int
    concurrency_limit: int
    estimated_duration: float
    resource_requirements: ResourceRequirements


class JobConfig(BaseModel):
    """Full job policy snapshot."""

    # Processing intervals
    processing_interval: float = 30
    health_check_interval: float = 60
    metrics_update_interval: float = 5 * 60

    # Timeouts
    job_timeout: float = 15 * 60
    step_timeout: float = 25  # advisory, reported only
    api_timeout: float = 30
    max_run_time: float = 5 * 60  # wall-clock budget for one worker-driven job run

    # Concurrency
    max_concurrent_jobs: int = 3
    max_jobs_per_user: int = 5
    max_jobs_per_type: int = 10  # advisory, reported only

    # Retry settings
    max_retries: int = 3
    retry_backoff_base: float = 1
    retry_backoff_max: float = 60

    # Queue management
    max_queue_depth: int = 100
    priority_levels: list[str] = ["low", "normal", "high", "urgent"]
    job_retention_days: int = 7

    # Feature flags
    enable_auto_processing: bool = True
    enable_priority_processing: bool = True
    enable_job_cancellation: bool = True
    enable_metrics_collection: bool = True
    enable_health_checks: bool = True

    # Performance
    batch_size: int = 5
    resource_thresholds: ResourceThresholds = ResourceThresholds()

    # Monitoring
    alert_thresholds: AlertThresholds = AlertThresholds()
    health_thresholds: HealthThresholds = HealthThresholds()


DEFAULT_CONFIG = JobConfig()

JOB_TYPE_CONFIGS: dict[JobType, JobTypeConfig] = {
    JobType.STORYBOOK: JobTypeConfig(
        timeout=20 * 60,
        max_retries=2,
        priority=2,
        concurrency_limit=2,
        estimated_duration=8 * 60,
        resource_requirements=ResourceRequirements(cpu="high", memory="medium", network="high"),
    ),
    JobType.AUTO_STORY: JobTypeConfig(
        timeout=15 * 60,
        max_retries=3,
        priority=3,
        concurrency_limit=2,
        estimated_duration=6 * 60,
        resource_requirements=ResourceRequirements(cpu="high", memory="medium", network="high"),
    ),
    JobType.SCENES: JobTypeConfig(
        timeout=10 * 60,
        max_retries=3,
        priority=2,
        concurrency_limit=3,
        estimated_duration=4 * 60,
        resource_requirements=ResourceRequirements(cpu="medium", memory="low", network="medium"),
    ),
    JobType.CARTOONIZE: JobTypeConfig(
        timeout=5 * 60,
        max_retries=3,
        priority=1,
        concurrency_limit=5,
        estimated_duration=2 * 60,
        resource_requirements=ResourceRequirements(cpu="medium", memory="low", network="high"),
    ),
    JobType.IMAGE_GENERATION: JobTypeConfig(
        timeout=5 * 60,
        max_retries=3,
        priority=1,
        concurrency_limit=5,
        estimated_duration=90,
        resource_requirements=ResourceRequirements(cpu="medium", memory="low", network="high"),
    ),
}

ENVIRONMENT_OVERRIDES: dict[str, dict[str, Any]] = {
    "development": {
        "processing_interval": 10,
        "max_concurrent_jobs": 2,
        "job_timeout": 5 * 60,
        "enable_metrics_collection": False,
        "job_retention_days": 1,
    },
    "production": {
        "processing_interval": 30,
        "max_concurrent_jobs": 5,
        "job_timeout": 20 * 60,
        "enable_metrics_collection": True,
        "job_retention_days": 30,
        "alert_thresholds": AlertThresholds(
            queue_depth=50, error_rate=5, processing_time=15 * 60, wait_time=10 * 60
        ),
    },
    "test": {
        "processing_interval": 1,
        "max_concurrent_jobs": 1,
        "job_timeout": 30,
        "enable_auto_processing": False,
        "enable_metrics_collection": False,
        "job_retention_days": 0,
    },
}

FEATURE_FLAGS = (
    "enable_auto_processing",
    "enable_priority_processing",
    "enable_job_cancellation",
    "enable_metrics_collection",
    "enable_health_checks",
)


def _env_overrides(settings: Settings) -> dict[str, Any]:
    candidates = {
        "enable_auto_processing": settings.enable_auto_processing,
        "processing_interval": settings.job_processing_interval_seconds,
        "max_concurrent_jobs": settings.max_concurrent_jobs,
        "max_jobs_per_user": settings.max_jobs_per_user,
        "job_timeout": (
            settings.job_timeout_minutes * 60 if settings.job_timeout_minutes is not None else None
        ),
        "enable_priority_processing": settings.enable_priority_processing,
        "enable_metrics_collection": settings.monitoring_enabled,
        "job_retention_days": settings.job_retention_days,
    }
    return {key: value for key, value in candidates.items() if value is not None}


class JobConfigManager:
    """Single source of truth for job policy.

    Build once per process (``JobConfigManager.from_settings(settings)``) and pass
    the instance to the manager, worker and monitor.
    """

    def __init__(self, environment: str = "development", overrides: dict[str, Any] | None = None):
        self.environment = environment
        tier = ENVIRONMENT_OVERRIDES.get(environment, {})
        self._config = DEFAULT_CONFIG.model_copy(update={**tier, **(overrides or {})}, deep=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobConfigManager":
        return cls(environment=settings.app_env, overrides=_env_overrides(settings))

    def get_config(self) -> JobConfig:
        """Return a deep copy of the current policy snapshot."""
        return self._config.model_copy(deep=True)

    def get_job_type_config(self, job_type: JobType | str) -> JobTypeConfig | None:
        """Return per-type overrides, or None for an unknown type."""
        try:
            return JOB_TYPE_CONFIGS.get(JobType(job_type))
        except ValueError:
            return None

    def get_processing_interval(self) -> float:
        return self._config.processing_interval

    def get_max_concurrent_jobs(self) -> int:
        return self._config.max_concurrent_jobs

    def get_retention_days(self) -> int:
        return self._config.job_retention_days

    def get_job_timeout(self, job_type: JobType | str | None = None) -> float:
        type_config = self.get_job_type_config(job_type) if job_type else None
        return type_config.timeout if type_config else self._config.job_timeout

    def get_max_retries(self, job_type: JobType | str | None = None) -> int:
        type_config = self.get_job_type_config(job_type) if job_type else None
        return type_config.max_retries if type_config else self._config.max_retries

    def get_estimated_duration(self, job_type: JobType | str) -> float:
        type_config = self.get_job_type_config(job_type)
        return type_config.estimated_duration if type_config else 5 * 60

    def get_concurrency_limit(self, job_type: JobType | str) -> int:
        type_config = self.get_job_type_config(job_type)
        return type_config.concurrency_limit if type_config else 1

    def get_job_priority(self, job_type: JobType | str) -> int:
        type_config = self.get_job_type_config(job_type)
        return type_config.priority if type_config else 1

    def get_retry_delay(self, attempt: int) -> float:
        """Exponential backoff ``base * 2**attempt`` clamped to ``retry_backoff_max``."""
        delay = self._config.retry_backoff_base * (2**attempt)
        return min(delay, self._config.retry_backoff_max)

    def is_feature_enabled(self, flag: str) -> bool:
        """Check a feature flag by name, with or without the ``enable_`` prefix."""
        name = flag if flag.startswith("enable_") else f"enable_{flag}"
        if name not in FEATURE_FLAGS:
            return False
        return bool(getattr(self._config, name))

    def should_alert(self, metric: str, value: float) -> bool:
        """True if ``value`` exceeds the configured alert threshold for ``metric``."""
        threshold = getattr(self._config.alert_thresholds, metric, None)
        return threshold is not None and value > threshold

    def validate_config(self) -> list[str]:
        """Return human-readable policy violations. Never raises."""
        errors: list[str] = []
        config = self._config

        if config.max_concurrent_jobs < 1:
            errors.append("max_concurrent_jobs must be at least 1")
        if config.processing_interval < 1:
            errors.append("processing_interval must be at least 1 second")
        if config.job_timeout < 30:
            errors.append("job_timeout must be at least 30 seconds")
        if config.max_retries < 0:
            errors.append("max_retries cannot be negative")
        if config.retry_backoff_max < config.retry_backoff_base:
            errors.append("retry_backoff_max must not be smaller than retry_backoff_base")

        return errors

    def update_config(self, **changes: Any) -> None:
        """Overlay runtime changes on the current policy."""
        self._config = self._config.model_copy(update=changes, deep=True)
        logger.info("job_config.updated", keys=sorted(changes))

    def get_config_summary(self) -> dict[str, Any]:
        config = self._config
        return {
            "environment": self.environment,
            "auto_processing": config.enable_auto_processing,
            "processing_interval": config.processing_interval,
            "max_concurrent_jobs": config.max_concurrent_jobs,
            "job_timeout": config.job_timeout,
            "max_run_time": config.max_run_time,
            "step_timeout": config.step_timeout,
            "max_jobs_per_type": config.max_jobs_per_type,
            "max_retries": config.max_retries,
            "job_types": {
                job_type.value: type_config.model_dump(
                    include={"timeout", "max_retries", "priority", "concurrency_limit"}
                )
                for job_type, type_config in JOB_TYPE_CONFIGS.items()
            },
            "features": {
                "priority_processing": config.enable_priority_processing,
                "job_cancellation": config.enable_job_cancellation,
                "metrics_collection": config.enable_metrics_collection,
                "health_checks": config.enable_health_checks,
            },
        }
