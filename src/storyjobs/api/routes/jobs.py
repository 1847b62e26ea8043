"""Job lifecycle API endpoints.

This module implements REST endpoints for background jobs:
- POST /api/jobs/{job_type}/start - Queue a new job (with admission control)
- GET /api/jobs/{job_id} - Poll job status, progress and result
- GET /api/jobs - List jobs by user/type/status
- POST /api/jobs/{job_id}/cancel - Cancel a pending or processing job

Job creation only queues work. Processing happens in the worker, triggered by
its polling loop, the cron webhook or a manual processing call.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from storyjobs.api.dependencies import get_job_config, get_job_manager
from storyjobs.models.job import Job, JobStatus, JobType
from storyjobs.repositories.job import JobFilter
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.job_types import get_job_type_spec
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.outcome import Outcome, StoreError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])

TERMINAL_CACHE_CONTROL = "public, max-age=3600"
ACTIVE_CACHE_CONTROL = "no-cache, no-store, must-revalidate"

_STATUS_FOR_ERROR = {
    StoreError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    StoreError.TERMINAL_STATE: status.HTTP_409_CONFLICT,
    StoreError.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreError.QUERY_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_DETAIL_FOR_ERROR = {
    StoreError.NOT_FOUND: "Job not found",
    StoreError.TERMINAL_STATE: "Job is already finished",
    StoreError.UNAVAILABLE: "Job store is not available",
    StoreError.QUERY_FAILED: "Job store is not available",
}


def raise_for_outcome(outcome: Outcome) -> None:
    """Translate a failed outcome into an HTTP error; raw store errors are never echoed."""
    if outcome.ok:
        return
    raise HTTPException(
        status_code=_STATUS_FOR_ERROR[outcome.error],  # type: ignore[index]
        detail=_DETAIL_FOR_ERROR[outcome.error],  # type: ignore[index]
    )


# Request/Response Models


class StartJobRequest(BaseModel):
    """Request model for queueing a job."""

    input_data: dict[str, Any] = Field(
        ...,
        description="Type-specific job payload, stored verbatim and forwarded to the processor",
    )
    user_id: UUID | None = Field(
        default=None,
        description="Owner of the job (enables per-user limits and filtering)",
    )


class StartJobResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    polling_url: str = Field(..., description="Endpoint to poll for status")
    estimated_duration_seconds: float


class JobStatusResponse(BaseModel):
    """Response model for job status polling."""

    job_id: UUID
    job_type: JobType
    status: JobStatus
    progress: int = Field(..., ge=0, le=100)
    current_step: str | None = None
    current_phase: str | None = Field(
        default=None, description="Phase label derived from progress (null once done)"
    )
    estimated_time_remaining: str | None = Field(
        default=None, description="Rough estimate, only while processing"
    )
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processing_time_seconds: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    retry_count: int | None = None
    max_retries: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse]
    total: int  # matching jobs across all pages
    offset: int
    limit: int


def build_status_response(job: Job) -> JobStatusResponse:
    """Shape a job row for polling clients."""
    spec = get_job_type_spec(job.type)
    response = JobStatusResponse(
        job_id=job.id,
        job_type=spec.job_type,
        status=job.status,
        progress=job.progress,
        current_step=job.current_step,
        current_phase=spec.current_phase(job.progress),
        estimated_time_remaining=spec.estimate_time_remaining(job.progress, job.status),
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        metadata=spec.build_metadata(job.input_data, job.user_id),
    )

    if job.started_at and job.completed_at:
        response.processing_time_seconds = round(
            (job.completed_at - job.started_at).total_seconds()
        )
    if job.status == JobStatus.COMPLETED and job.result_data:
        response.result = spec.format_result(job.result_data)
    if job.status == JobStatus.FAILED:
        response.error = job.error_message or f"{spec.job_type.value} job failed"
    if job.status == JobStatus.FAILED or job.retry_count > 0:
        response.retry_count = job.retry_count
        response.max_retries = job.max_retries

    return response


# Endpoints


@router.post(
    "/{job_type}/start",
    response_model=StartJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_job(
    job_type: JobType,
    request: StartJobRequest,
    manager: JobManager = Depends(get_job_manager),
    job_config: JobConfigManager = Depends(get_job_config),
) -> StartJobResponse:
    """Queue a job of the given type.

    Admission control:
    - 503 when the queue (pending + processing) is at ``max_queue_depth``
    - 429 when the user already has ``max_jobs_per_user`` active jobs

    Returns:
        202 with the job id and polling URL
    """
    config = job_config.get_config()

    queue_stats = await manager.get_job_stats()
    raise_for_outcome(queue_stats)
    counts: dict[str, int] = queue_stats.value  # type: ignore[assignment]
    queue_depth = counts[JobStatus.PENDING.value] + counts[JobStatus.PROCESSING.value]
    if queue_depth >= config.max_queue_depth:
        logger.warning(
            "job.admission_rejected",
            reason="queue_full",
            queue_depth=queue_depth,
            max_queue_depth=config.max_queue_depth,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is full, try again later",
        )

    if request.user_id is not None:
        user_stats = await manager.get_job_stats(request.user_id)
        raise_for_outcome(user_stats)
        user_counts: dict[str, int] = user_stats.value  # type: ignore[assignment]
        active = user_counts[JobStatus.PENDING.value] + user_counts[JobStatus.PROCESSING.value]
        if active >= config.max_jobs_per_user:
            logger.info(
                "job.admission_rejected",
                reason="user_limit",
                user_id=str(request.user_id),
                active_jobs=active,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many active jobs (limit {config.max_jobs_per_user})",
            )

    created = await manager.create_job(job_type, request.input_data, request.user_id)
    raise_for_outcome(created)
    job_id: UUID = created.value  # type: ignore[assignment]

    return StartJobResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        polling_url=f"/api/jobs/{job_id}",
        estimated_duration_seconds=job_config.get_estimated_duration(job_type),
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    user_id: UUID | None = Query(default=None),
    job_type: JobType | None = Query(default=None, alias="type"),
    job_status: JobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    manager: JobManager = Depends(get_job_manager),
) -> JobListResponse:
    """List jobs newest first, filtered by owner, type and status."""
    job_filter = JobFilter(
        user_id=user_id, job_type=job_type, status=job_status, limit=limit, offset=offset
    )
    outcome = await manager.get_jobs(job_filter)
    raise_for_outcome(outcome)
    total = await manager.count_jobs(job_filter)
    raise_for_outcome(total)
    jobs = [build_status_response(job) for job in outcome.value]  # type: ignore[union-attr]
    return JobListResponse(jobs=jobs, total=total.value, offset=offset, limit=limit)


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job(
    job_id: UUID,
    response: Response,
    manager: JobManager = Depends(get_job_manager),
) -> JobStatusResponse:
    """Poll a job.

    Terminal jobs are cacheable for an hour; active jobs are never cached.
    """
    outcome = await manager.get_job_status(job_id)
    raise_for_outcome(outcome)
    job: Job = outcome.value  # type: ignore[assignment]

    response.headers["Cache-Control"] = (
        TERMINAL_CACHE_CONTROL if job.is_terminal else ACTIVE_CACHE_CONTROL
    )
    return build_status_response(job)


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(
    job_id: UUID,
    manager: JobManager = Depends(get_job_manager),
    job_config: JobConfigManager = Depends(get_job_config),
) -> JobStatusResponse:
    """Cancel a pending or processing job.

    Returns:
        200 with the cancelled job, 403 when cancellation is disabled,
        404 for an unknown job, 409 when the job is already finished
    """
    if not job_config.is_feature_enabled("job_cancellation"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Job cancellation is disabled"
        )

    outcome = await manager.cancel_job(job_id)
    raise_for_outcome(outcome)
    return build_status_response(outcome.value)  # type: ignore[arg-type]
