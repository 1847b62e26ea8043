"""Job processing trigger endpoints.

- POST /api/jobs/process - Manual processing run (one batch or one job)
- POST /api/cron/process-jobs - Scheduled trigger from a cron provider

Both run a single worker batch inside the request; they are how deployments
without the in-process polling loop (serverless, multiple instances) drive the
queue.
"""

import time
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storyjobs.api.dependencies import (
    get_job_config,
    get_job_manager,
    get_job_monitor,
    get_job_worker,
    get_rate_limiter,
    validate_cron_webhook,
)
from storyjobs.core.timezone import utcnow
from storyjobs.models.job import JobType
from storyjobs.repositories.job import JobFilter
from storyjobs.services.cron_webhook import GITHUB_ACTIONS, CronProvider
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.monitor import JobMonitor
from storyjobs.services.rate_limiter import RateLimiter
from storyjobs.workers.job_worker import JobWorker, ProcessingSummary

logger = structlog.get_logger()
router = APIRouter(tags=["processing"])


# Request Models


class ProcessJobsRequest(BaseModel):
    """Request model for a manual processing run."""

    max_jobs: int = Field(default=10, ge=1, le=50)
    job_id: UUID | None = Field(
        default=None, description="Process only this job (must be pending)"
    )
    job_types: list[JobType] = Field(default_factory=list)
    cleanup: bool = False
    cleanup_days: int | None = Field(
        default=None, ge=0, description="Retention in days (default: configured retention)"
    )
    force_processing: bool = Field(
        default=False, description="Run even if automatic processing is disabled"
    )


class CronTriggerRequest(BaseModel):
    """Optional body of a cron trigger."""

    max_jobs: int = Field(default=10, ge=1, le=50)
    job_types: list[JobType] = Field(default_factory=list)
    emergency_mode: bool = Field(
        default=False, description="Override the health gate and raise the job cap"
    )
    cleanup: bool = False
    cleanup_days: int | None = Field(
        default=None, ge=0, description="Retention in days (default: configured retention)"
    )
    health_check: bool = True


# Helpers


def _performance(summary: ProcessingSummary, elapsed_seconds: float) -> dict[str, float]:
    attempted = summary.processed + summary.errors
    return {
        "processing_time_seconds": elapsed_seconds,
        "processing_rate": summary.processed / elapsed_seconds if elapsed_seconds > 0 else 0.0,
        "error_rate": summary.errors / attempted * 100 if attempted else 0.0,
        "efficiency": (
            summary.processed / (summary.processed + summary.skipped) * 100
            if summary.processed
            else 0.0
        ),
    }


def _recommendations(
    summary: ProcessingSummary,
    performance: dict[str, float],
    queue_status: dict[str, Any] | None,
    provider: CronProvider | None = None,
) -> list[str]:
    pending = queue_status["queue"]["pending"] if queue_status else 0
    recommendations: list[str] = []

    if provider is GITHUB_ACTIONS and summary.processed == 0 and pending > 0:
        recommendations.append(
            "Consider increasing GitHub Actions frequency or using a more frequent cron provider"
        )
    if performance["processing_time_seconds"] > 25:
        recommendations.append(
            "Processing time is approaching timeout limits - consider reducing max_jobs"
        )
    if pending > 20:
        recommendations.append(
            "High queue depth - consider increasing trigger frequency or enabling emergency mode"
        )
    if performance["error_rate"] > 20:
        recommendations.append(
            "High error rate detected - investigate failing jobs and system health"
        )
    if summary.processed > 0 and summary.errors == 0:
        recommendations.append("Processing completed successfully - system operating normally")

    return recommendations


async def _cleanup(monitor: JobMonitor, days: int | None) -> dict[str, Any]:
    if days is None:
        days = monitor.config.get_retention_days()
    outcome = await monitor.cleanup_old_jobs(days)
    if not outcome:
        return {"error": "Cleanup failed", "older_than_days": days}
    return {"cleaned": outcome.value, "older_than_days": days}


# Endpoints


@router.post("/api/jobs/process")
async def process_jobs(
    request: ProcessJobsRequest | None = None,
    worker: JobWorker = Depends(get_job_worker),
    manager: JobManager = Depends(get_job_manager),
    monitor: JobMonitor = Depends(get_job_monitor),
    job_config: JobConfigManager = Depends(get_job_config),
) -> dict[str, Any]:
    """Run one processing batch, or a single job, on demand.

    Returns:
        200 with the batch summary, 503 when the worker is unhealthy,
        400 when automatic processing is disabled and not forced
    """
    request = request or ProcessJobsRequest()
    started = time.monotonic()

    if not worker.is_healthy():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job processing system is not healthy",
        )
    if not request.force_processing and not job_config.is_feature_enabled("auto_processing"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Automatic processing is disabled; use force_processing=true to override",
        )

    result: dict[str, Any] = {
        "timestamp": utcnow().isoformat(),
        "configuration": job_config.get_config_summary(),
    }

    if request.job_id is not None:
        success = await worker.process_job_by_id(request.job_id)
        summary = ProcessingSummary(processed=int(success), errors=int(not success))
        result["specific_job"] = {"job_id": str(request.job_id), "success": success}
    else:
        job_filter = JobFilter(types=list(request.job_types)) if request.job_types else None
        summary = await worker.process_jobs(request.max_jobs, job_filter)
        if request.job_types:
            result["filtered_types"] = [t.value for t in request.job_types]
    result.update(summary.to_dict())

    if request.cleanup:
        result["cleanup"] = await _cleanup(monitor, request.cleanup_days)

    queue_status = await worker.get_queue_status()
    result["queue_status"] = queue_status
    result["statistics"] = (await manager.get_job_stats()).value
    result["performance"] = _performance(summary, time.monotonic() - started)
    result["recommendations"] = _recommendations(summary, result["performance"], queue_status)

    logger.info("processing.manual_completed", **summary.to_dict())
    return result


@router.post("/api/cron/process-jobs")
async def cron_process_jobs(
    request: CronTriggerRequest | None = None,
    provider: CronProvider = Depends(validate_cron_webhook),
    worker: JobWorker = Depends(get_job_worker),
    manager: JobManager = Depends(get_job_manager),
    monitor: JobMonitor = Depends(get_job_monitor),
    job_config: JobConfigManager = Depends(get_job_config),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Scheduled processing trigger.

    Order of checks: webhook secret (401), per-provider rate limit (429),
    health gate unless ``emergency_mode`` (503), automatic processing flag
    unless ``emergency_mode`` (400). The batch size is capped per provider.
    """
    request = request or CronTriggerRequest()
    started = time.monotonic()
    result: dict[str, Any] = {
        "timestamp": utcnow().isoformat(),
        "provider": provider.name,
        "emergency_mode": request.emergency_mode,
        "processed": 0,
        "errors": 0,
        "skipped": 0,
    }

    decision = rate_limiter.check(f"cron:{provider.name}")
    if not decision.allowed:
        logger.warning("cron.rate_limited", provider=provider.name, retry_after=decision.retry_after)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={**result, "error": "Rate limit exceeded", "retry_after": decision.retry_after},
            headers={"Retry-After": str(decision.retry_after)},
        )

    if request.health_check:
        health = await _health_gate(worker, manager, job_config)
        result["health_check"] = health
        if not health["healthy"] and not request.emergency_mode:
            logger.warning("cron.health_gate_closed", provider=provider.name, reason=health["message"])
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    **result,
                    "error": "System health check failed",
                    "message": "Use emergency_mode=true to override health check",
                },
            )

    if not request.emergency_mode and not job_config.is_feature_enabled("auto_processing"):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                **result,
                "error": "Automatic processing is disabled",
                "message": "Use emergency_mode=true to override this setting",
            },
        )

    max_jobs = min(request.max_jobs, provider.job_cap(request.emergency_mode))
    job_filter = JobFilter(types=list(request.job_types)) if request.job_types else None
    logger.info("cron.processing", provider=provider.name, max_jobs=max_jobs)

    summary = await worker.process_jobs(max_jobs, job_filter)
    result.update(summary.to_dict())
    if request.job_types:
        result["filtered_types"] = [t.value for t in request.job_types]

    if request.cleanup:
        result["cleanup"] = await _cleanup(monitor, request.cleanup_days)

    queue_status = await worker.get_queue_status()
    result["queue_status"] = queue_status
    result["statistics"] = (await manager.get_job_stats()).value
    result["performance"] = _performance(summary, time.monotonic() - started)
    result["recommendations"] = _recommendations(
        summary, result["performance"], queue_status, provider
    )

    logger.info("cron.completed", provider=provider.name, **summary.to_dict())
    return result


async def _health_gate(
    worker: JobWorker, manager: JobManager, job_config: JobConfigManager
) -> dict[str, Any]:
    if not (worker.is_healthy() and manager.is_healthy()):
        return {"healthy": False, "message": "Core job systems are not operational"}

    queue_status = await worker.get_queue_status()
    if queue_status is None:
        return {"healthy": False, "message": "Health check failed"}

    pending = queue_status["queue"]["pending"]
    threshold = job_config.get_config().alert_thresholds.queue_depth
    if pending > threshold:
        return {
            "healthy": False,
            "message": "Queue depth exceeds alert threshold",
            "details": {"queue_depth": pending, "threshold": threshold},
        }
    return {"healthy": True, "message": "System is healthy"}
