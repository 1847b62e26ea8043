"""Read-side analytics and health scoring over the job store.

Aggregates are cached for a short TTL (see ``MetricsCache``), so health data can
be up to one TTL stale. Good enough for dashboards and admission gates, not for
lifecycle decisions.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Literal

import structlog
from pydantic import BaseModel, Field

from storyjobs.core.timezone import utcnow
from storyjobs.models.job import Job, JobStatus, JobType
from storyjobs.services.jobs.cache import MetricsCache
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.manager import STORE_ERRORS
from storyjobs.services.jobs.outcome import Outcome, StoreError
from storyjobs.uow import UnitOfWork

logger = structlog.get_logger(__name__)

HealthStatus = Literal["healthy", "warning", "critical"]

JOB_STATISTICS_KEY = "job-statistics"
TYPE_STATISTICS_KEY = "job-type-statistics"
PERFORMANCE_METRICS_KEY = "performance-metrics"


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    if finished == 0:
        return 100.0
    return completed / finished * 100


def _mean_seconds(durations: list[timedelta]) -> float:
    if not durations:
        return 0.0
    return sum(d.total_seconds() for d in durations) / len(durations)


class JobStatistics(BaseModel):
    total_jobs: int = 0
    pending_jobs: int = 0
    processing_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    average_processing_time: float = 0.0  # seconds
    success_rate: float = 100.0  # percentage, cancelled jobs excluded
    queue_depth: int = 0
    oldest_pending_job: datetime | None = None


class TypeStatistics(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    average_time: float = 0.0  # seconds
    success_rate: float = 100.0


class SystemHealth(BaseModel):
    status: HealthStatus = "healthy"
    queue_depth: int = 0
    processing_capacity: int = 0
    error_rate: float = 0.0
    average_wait_time: float = 0.0  # seconds the oldest pending job has waited
    alerts: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    jobs_per_hour: int = 0
    jobs_per_day: int = 0
    peak_processing_time: float = 0.0  # seconds
    resource_utilization: float = 0.0  # percentage
    error_frequency: float = 0.0  # percentage
    retry_rate: float = 0.0  # percentage


class HealthReport(BaseModel):
    timestamp: datetime
    system_health: SystemHealth
    job_statistics: JobStatistics
    type_statistics: dict[str, TypeStatistics]
    performance_metrics: PerformanceMetrics
    stuck_jobs: list[dict[str, Any]]


def _stuck_job_summary(job: Job) -> dict[str, Any]:
    return {
        "id": str(job.id),
        "type": JobType(job.type).value,
        "progress": job.progress,
        "current_step": job.current_step,
        "user_id": str(job.user_id) if job.user_id else None,
        "updated_at": job.updated_at.isoformat(),
        "retry_count": job.retry_count,
    }


class JobMonitor:
    """Statistics, health verdicts and stuck-job detection for background jobs."""

    def __init__(
        self,
        uow_factory: Callable | None,
        config: JobConfigManager,
        cache: MetricsCache | None = None,
    ):
        self._uow_factory = uow_factory
        self.config = config
        self.cache = cache or MetricsCache()

    def is_healthy(self) -> bool:
        return self._uow_factory is not None

    async def _run(self, operation: str, fn: Callable[[UnitOfWork], Any]) -> Outcome:
        if not self.is_healthy():
            logger.error("job_monitor.unavailable", operation=operation)
            return Outcome.failure(StoreError.UNAVAILABLE, "job monitor not initialized")
        try:
            async with await self._uow_factory() as uow:  # type: ignore[misc]
                return Outcome.success(await fn(uow))
        except STORE_ERRORS as e:
            logger.error(
                "job_monitor.query_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return Outcome.failure(StoreError.QUERY_FAILED, f"{operation} failed")

    async def _cached(self, key: str, operation: str, fn: Callable[[UnitOfWork], Any]) -> Outcome:
        cached = self.cache.get(key)
        if cached is not None:
            return Outcome.success(cached)
        outcome = await self._run(operation, fn)
        if outcome:
            self.cache.set(key, outcome.value)
        return outcome

    async def get_job_statistics(self) -> Outcome[JobStatistics]:
        """Counts per status, queue depth, mean processing time and success rate."""

        async def _collect(uow: UnitOfWork) -> JobStatistics:
            counts = await uow.jobs.count_by_status()
            timings = await uow.jobs.get_completion_timings()
            oldest_pending = await uow.jobs.get_oldest_pending_created_at()

            completed = counts.get(JobStatus.COMPLETED, 0)
            failed = counts.get(JobStatus.FAILED, 0)
            pending = counts.get(JobStatus.PENDING, 0)
            processing = counts.get(JobStatus.PROCESSING, 0)
            return JobStatistics(
                total_jobs=sum(counts.values()),
                pending_jobs=pending,
                processing_jobs=processing,
                completed_jobs=completed,
                failed_jobs=failed,
                cancelled_jobs=counts.get(JobStatus.CANCELLED, 0),
                average_processing_time=_mean_seconds(
                    [completed_at - started_at for _, started_at, completed_at in timings]
                ),
                success_rate=_success_rate(completed, failed),
                queue_depth=pending + processing,
                oldest_pending_job=oldest_pending,
            )

        return await self._cached(JOB_STATISTICS_KEY, "get job statistics", _collect)

    async def get_job_type_statistics(self) -> Outcome[dict[str, TypeStatistics]]:
        """Same breakdown as ``get_job_statistics``, keyed by job type value."""

        async def _collect(uow: UnitOfWork) -> dict[str, TypeStatistics]:
            type_stats: dict[str, TypeStatistics] = {}
            for job_type, status, count in await uow.jobs.count_by_type_and_status():
                stats = type_stats.setdefault(job_type.value, TypeStatistics())
                stats.total += count
                if status == JobStatus.COMPLETED:
                    stats.completed += count
                elif status == JobStatus.FAILED:
                    stats.failed += count
                elif status == JobStatus.CANCELLED:
                    stats.cancelled += count

            durations: dict[str, list[timedelta]] = {}
            for job_type, started_at, completed_at in await uow.jobs.get_completion_timings():
                durations.setdefault(job_type.value, []).append(completed_at - started_at)

            for type_name, stats in type_stats.items():
                stats.success_rate = _success_rate(stats.completed, stats.failed)
                stats.average_time = _mean_seconds(durations.get(type_name, []))
            return type_stats

        return await self._cached(TYPE_STATISTICS_KEY, "get job type statistics", _collect)

    def assess_health(self, stats: JobStatistics, now: datetime | None = None) -> SystemHealth:
        """Grade a statistics snapshot against the configured health thresholds.

        Every breached threshold contributes its own alert and recommendation;
        the verdict is the worst level reached.
        """
        now = now or utcnow()
        thresholds = self.config.get_config().health_thresholds
        wait_time = (now - stats.oldest_pending_job).total_seconds() if stats.oldest_pending_job else 0.0

        health = SystemHealth(
            queue_depth=stats.queue_depth,
            processing_capacity=self.config.get_max_concurrent_jobs(),
            error_rate=100 - stats.success_rate,
            average_wait_time=wait_time,
        )

        def raise_to(level: HealthStatus) -> None:
            if level == "critical" or health.status == "healthy":
                health.status = level

        if stats.queue_depth > thresholds.queue_depth_critical:
            raise_to("critical")
            health.alerts.append("Queue depth is critically high")
            health.recommendations.append("Increase processing capacity or investigate stuck jobs")
        elif stats.queue_depth > thresholds.queue_depth_warning:
            raise_to("warning")
            health.alerts.append("Queue depth is elevated")
            health.recommendations.append("Monitor queue closely and consider scaling")

        if stats.success_rate < thresholds.success_rate_critical:
            raise_to("critical")
            health.alerts.append("Job success rate is below acceptable threshold")
            health.recommendations.append("Investigate failing jobs and improve error handling")
        elif stats.success_rate < thresholds.success_rate_warning:
            raise_to("warning")
            health.alerts.append("Job success rate could be improved")
            health.recommendations.append("Review failed jobs for common patterns")

        if wait_time > thresholds.max_pending_wait:
            raise_to("critical")
            health.alerts.append("Jobs are waiting too long in queue")
            health.recommendations.append("Check processing system and clear any stuck jobs")

        if stats.average_processing_time > thresholds.slow_processing:
            health.recommendations.append("Consider optimizing job processing performance")

        return health

    async def get_system_health(self) -> SystemHealth:
        """Health verdict for the current store; an unreadable store is critical."""
        outcome = await self.get_job_statistics()
        if not outcome:
            logger.error("job_monitor.health_check_failed", error=outcome.error)
            return SystemHealth(
                status="critical",
                error_rate=100.0,
                alerts=["Unable to assess system health"],
                recommendations=["System health check failed - investigate monitoring system"],
            )

        health = self.assess_health(outcome.value)  # type: ignore[arg-type]
        if health.status != "healthy":
            logger.warning(
                "job_monitor.degraded",
                status=health.status,
                alerts=health.alerts,
                queue_depth=health.queue_depth,
            )
        return health

    async def get_performance_metrics(self) -> Outcome[PerformanceMetrics]:
        """Throughput, error and retry rates over the last 24 hours."""

        async def _collect(uow: UnitOfWork) -> PerformanceMetrics:
            now = utcnow()
            recent = await uow.jobs.get_created_since(now - timedelta(days=1))
            if not recent:
                return PerformanceMetrics()

            one_hour_ago = now - timedelta(hours=1)
            processing_times = [
                (job.completed_at - job.started_at).total_seconds()
                for job in recent
                if job.status == JobStatus.COMPLETED and job.started_at and job.completed_at
            ]
            failed = sum(1 for job in recent if job.status == JobStatus.FAILED)
            retried = sum(1 for job in recent if job.retry_count > 0)

            cached_stats: JobStatistics | None = self.cache.get(JOB_STATISTICS_KEY)
            queue_depth = cached_stats.queue_depth if cached_stats else 0

            return PerformanceMetrics(
                jobs_per_hour=sum(1 for job in recent if job.created_at >= one_hour_ago),
                jobs_per_day=len(recent),
                peak_processing_time=max(processing_times, default=0.0),
                resource_utilization=min(100, queue_depth * 10),
                error_frequency=failed / len(recent) * 100,
                retry_rate=retried / len(recent) * 100,
            )

        return await self._cached(PERFORMANCE_METRICS_KEY, "get performance metrics", _collect)

    async def get_stuck_jobs(self) -> Outcome[list[Job]]:
        """Processing jobs whose last update is older than the stuck threshold.

        These are only surfaced, never remediated here.
        """
        stuck_after = self.config.get_config().health_thresholds.stuck_after

        async def _collect(uow: UnitOfWork) -> list[Job]:
            return await uow.jobs.get_stale_processing(utcnow() - timedelta(seconds=stuck_after))

        outcome = await self._run("get stuck jobs", _collect)
        if outcome and outcome.value:
            logger.warning("job_monitor.stuck_jobs", count=len(outcome.value))
        return outcome

    async def cleanup_old_jobs(self, retention_days: int | None = None) -> Outcome[int]:
        """Delete terminal jobs completed more than ``retention_days`` ago.

        Defaults to the configured ``job_retention_days``.
        """
        if retention_days is None:
            retention_days = self.config.get_retention_days()
        cutoff = utcnow() - timedelta(days=retention_days)

        async def _cleanup(uow: UnitOfWork) -> int:
            return await uow.jobs.delete_terminal_before(cutoff)

        outcome = await self._run("cleanup old jobs", _cleanup)
        if outcome:
            logger.info("job_monitor.cleanup", deleted=outcome.value, retention_days=retention_days)
        return outcome

    async def generate_health_report(self) -> Outcome[HealthReport]:
        """Everything above in one snapshot, for the health endpoint and CLI."""
        statistics = await self.get_job_statistics()
        if not statistics:
            return Outcome.failure(statistics.error, statistics.detail)  # type: ignore[arg-type]

        system_health = self.assess_health(statistics.value)  # type: ignore[arg-type]
        type_statistics = await self.get_job_type_statistics()
        performance = await self.get_performance_metrics()
        stuck = await self.get_stuck_jobs()
        for part in (type_statistics, performance, stuck):
            if not part:
                return Outcome.failure(part.error, part.detail)  # type: ignore[arg-type]

        return Outcome.success(
            HealthReport(
                timestamp=utcnow(),
                system_health=system_health,
                job_statistics=statistics.value,  # type: ignore[arg-type]
                type_statistics=type_statistics.value,  # type: ignore[arg-type]
                performance_metrics=performance.value,  # type: ignore[arg-type]
                stuck_jobs=[_stuck_job_summary(job) for job in stuck.value],  # type: ignore[union-attr]
            )
        )
