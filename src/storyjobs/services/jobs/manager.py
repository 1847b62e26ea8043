"""Background job manager.

The manager is the only component that writes to the job store. Every call runs
in its own Unit of Work and returns an ``Outcome``; store errors are logged and
reported as ``StoreError.QUERY_FAILED`` rather than raised, so the manager is
safe to call from best-effort contexts (cron triggers, cleanup, health checks).
"""

from datetime import timedelta
from typing import Any, Callable
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storyjobs.core.timezone import utcnow
from storyjobs.models.job import InvalidStateTransition, Job, JobStatus, JobType
from storyjobs.repositories.job import JobFilter
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.job_types import get_job_type_spec
from storyjobs.services.jobs.outcome import Outcome, StoreError
from storyjobs.uow import UnitOfWork

logger = structlog.get_logger(__name__)

STORE_ERRORS = (SQLAlchemyError, OSError)


class JobManager:
    """Lifecycle API over the job store."""

    def __init__(self, uow_factory: Callable | None, config: JobConfigManager):
        """Initialize manager.

        Args:
            uow_factory: Factory returned by ``create_uow_factory``; None when the
                database is not configured (manager stays unhealthy)
            config: Job policy
        """
        self._uow_factory = uow_factory
        self.config = config
        self._initialized = False

    async def initialize(self) -> bool:
        """Check the store once; the result backs ``is_healthy()``."""
        if self._uow_factory is None:
            logger.warning("job_manager.not_configured", reason="missing DATABASE_URL")
            return False
        try:
            async with await self._uow_factory() as uow:
                await uow.session.execute(text("SELECT 1"))
        except STORE_ERRORS as e:
            logger.error(
                "job_manager.init_failed", error=str(e), error_type=type(e).__name__
            )
            self._initialized = False
            return False

        self._initialized = True
        logger.info("job_manager.initialized")
        return True

    def is_healthy(self) -> bool:
        return self._initialized and self._uow_factory is not None

    async def _run(self, operation: str, fn: Callable[[UnitOfWork], Any]) -> Outcome:
        """Run ``fn`` inside a Unit of Work and translate failures into outcomes."""
        if not self.is_healthy():
            logger.error("job_manager.unavailable", operation=operation)
            return Outcome.failure(StoreError.UNAVAILABLE, "job manager not initialized")
        try:
            async with await self._uow_factory() as uow:  # type: ignore[misc]
                return await fn(uow)
        except STORE_ERRORS as e:
            logger.error(
                "job_manager.query_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return Outcome.failure(StoreError.QUERY_FAILED, f"{operation} failed")

    # Creation

    async def create_job(
        self, job_type: JobType | str, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        """Insert a new pending job and return its id.

        Args:
            job_type: Kind of work (fixes processor and result schema)
            input_data: Type-specific payload, stored verbatim
            user_id: Optional owner

        Returns:
            Outcome carrying the new job id
        """
        spec = get_job_type_spec(job_type)
        job = Job(
            type=spec.job_type,
            status=JobStatus.PENDING,
            progress=0,
            current_step=spec.initial_step,
            user_id=user_id,
            input_data=input_data,
            retry_count=0,
            max_retries=self.config.get_max_retries(spec.job_type),
        )

        async def _create(uow: UnitOfWork) -> Outcome[UUID]:
            await uow.jobs.add(job)
            return Outcome.success(job.id)

        outcome = await self._run(f"create {spec.job_type.value} job", _create)
        if outcome:
            logger.info(
                "job.created",
                job_id=str(job.id),
                job_type=spec.job_type.value,
                user_id=str(user_id) if user_id else None,
            )
        return outcome

    async def create_storybook_job(
        self, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        return await self.create_job(JobType.STORYBOOK, input_data, user_id)

    async def create_auto_story_job(
        self, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        return await self.create_job(JobType.AUTO_STORY, input_data, user_id)

    async def create_scene_job(
        self, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        return await self.create_job(JobType.SCENES, input_data, user_id)

    async def create_cartoonize_job(
        self, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        return await self.create_job(JobType.CARTOONIZE, input_data, user_id)

    async def create_image_job(
        self, input_data: dict[str, Any], user_id: UUID | None = None
    ) -> Outcome[UUID]:
        return await self.create_job(JobType.IMAGE_GENERATION, input_data, user_id)

    # Reads

    async def get_job_status(self, job_id: UUID) -> Outcome[Job]:
        """Full job row, or NOT_FOUND."""

        async def _get(uow: UnitOfWork) -> Outcome[Job]:
            job = await uow.jobs.get_by_id(job_id)
            if job is None:
                return Outcome.failure(StoreError.NOT_FOUND, f"job {job_id} not found")
            return Outcome.success(job)

        return await self._run("get job status", _get)

    async def get_pending_jobs(
        self, job_filter: JobFilter | None = None, limit: int = 50
    ) -> Outcome[list[Job]]:
        """Oldest-first page of pending jobs, optionally filtered by user or type."""

        async def _pending(uow: UnitOfWork) -> Outcome[list[Job]]:
            jobs = await uow.jobs.get_pending(job_filter, limit=limit)
            logger.debug("job.pending_fetched", count=len(jobs))
            return Outcome.success(jobs)

        return await self._run("get pending jobs", _pending)

    async def get_jobs(self, job_filter: JobFilter | None = None) -> Outcome[list[Job]]:
        """Jobs by user/type/status, newest first, with limit/offset pagination."""

        async def _find(uow: UnitOfWork) -> Outcome[list[Job]]:
            return Outcome.success(await uow.jobs.find(job_filter or JobFilter()))

        return await self._run("get jobs", _find)

    async def count_jobs(self, job_filter: JobFilter | None = None) -> Outcome[int]:
        """Number of jobs matching the filter, regardless of pagination."""

        async def _count(uow: UnitOfWork) -> Outcome[int]:
            return Outcome.success(await uow.jobs.count(job_filter or JobFilter()))

        return await self._run("count jobs", _count)

    async def get_job_stats(self, user_id: UUID | None = None) -> Outcome[dict[str, int]]:
        """Counts by status plus total."""

        async def _stats(uow: UnitOfWork) -> Outcome[dict[str, int]]:
            counts = await uow.jobs.count_by_status(user_id)
            stats = {status.value: counts.get(status, 0) for status in JobStatus}
            stats["total"] = sum(counts.values())
            return Outcome.success(stats)

        return await self._run("get job stats", _stats)

    # Transitions

    async def _transition(
        self, operation: str, job_id: UUID, apply: Callable[[Job], Any]
    ) -> Outcome[Job]:
        async def _update(uow: UnitOfWork) -> Outcome[Job]:
            job = await uow.jobs.get_by_id(job_id, for_update=True)
            if job is None:
                return Outcome.failure(StoreError.NOT_FOUND, f"job {job_id} not found")
            try:
                apply(job)
            except InvalidStateTransition as e:
                logger.warning(
                    "job.transition_ignored",
                    job_id=str(job_id),
                    operation=operation,
                    status=JobStatus(job.status).value,
                )
                return Outcome.failure(StoreError.TERMINAL_STATE, str(e))
            await uow.jobs.save(job)
            return Outcome.success(job)

        return await self._run(operation, _update)

    async def update_job_progress(
        self, job_id: UUID, progress: int, current_step: str | None = None
    ) -> Outcome[Job]:
        """Store clamped progress; first non-zero progress marks the job processing.

        Returns TERMINAL_STATE for completed/failed/cancelled jobs without writing,
        which is how processors notice cancellation.
        """
        outcome = await self._transition(
            "update job progress", job_id, lambda job: job.record_progress(progress, current_step)
        )
        if outcome:
            logger.debug("job.progress", job_id=str(job_id), progress=outcome.value.progress)  # type: ignore[union-attr]
        return outcome

    async def mark_job_completed(self, job_id: UUID, result_data: dict[str, Any]) -> Outcome[Job]:
        """Set completed, progress 100, result and completed_at together."""
        outcome = await self._transition(
            "mark job completed", job_id, lambda job: job.mark_completed(result_data)
        )
        if outcome:
            logger.info("job.completed", job_id=str(job_id))
        return outcome

    async def mark_job_failed(
        self, job_id: UUID, error_message: str, should_retry: bool = False
    ) -> Outcome[Job]:
        """Consume one retry and requeue the job, or fail it permanently.

        A retryable failure with budget left puts the job back to pending with
        progress 0, where the next poll picks it up like any new job.
        """
        outcome = await self._transition(
            "mark job failed", job_id, lambda job: job.mark_failed(error_message, should_retry)
        )
        if outcome:
            job = outcome.value
            if job.status == JobStatus.PENDING:  # type: ignore[union-attr]
                logger.warning(
                    "job.retry_scheduled",
                    job_id=str(job_id),
                    retry_count=job.retry_count,  # type: ignore[union-attr]
                    max_retries=job.max_retries,  # type: ignore[union-attr]
                    error_message=error_message,
                )
            else:
                logger.error(
                    "job.failed",
                    job_id=str(job_id),
                    retry_count=job.retry_count,  # type: ignore[union-attr]
                    error_message=error_message,
                )
        return outcome

    async def cancel_job(self, job_id: UUID) -> Outcome[Job]:
        """Force a non-terminal job to cancelled; terminal jobs are left unchanged.

        Cancellation is advisory: a processor already talking to the generation
        service only notices at its next progress update.
        """
        outcome = await self._transition("cancel job", job_id, lambda job: job.mark_cancelled())
        if outcome:
            logger.info("job.cancelled", job_id=str(job_id))
        return outcome

    # Retention

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> Outcome[int]:
        """Delete terminal jobs completed before the cutoff; returns rows removed."""
        cutoff = utcnow() - timedelta(days=older_than_days)

        async def _cleanup(uow: UnitOfWork) -> Outcome[int]:
            return Outcome.success(await uow.jobs.delete_terminal_before(cutoff))

        outcome = await self._run("cleanup old jobs", _cleanup)
        if outcome:
            logger.info("job.cleanup", deleted=outcome.value, older_than_days=older_than_days)
        return outcome
