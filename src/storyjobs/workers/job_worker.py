"""Background job worker.

Pulls pending jobs from the manager and hands them to the processor. Each job
runs under its own wall-clock budget (``asyncio.wait_for``), so a hung
generation call cannot stall the batch: on timeout the processing coroutine is
cancelled and the job goes back through the retry path like any other failure.

The worker runs either as a polling loop inside the API process (``start()``)
or one batch at a time from a trigger (cron webhook, manual API call, CLI).
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog

from storyjobs.core.timezone import utcnow
from storyjobs.models.job import Job, JobStatus, JobType
from storyjobs.repositories.job import JobFilter
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.lock import ProcessingLockService
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.processor import JobProcessor

logger = structlog.get_logger(__name__)


@dataclass
class ProcessingSummary:
    processed: int = 0
    errors: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class JobWorker:
    """Drives pending jobs through the processor, bounded by the concurrency limit."""

    def __init__(
        self,
        manager: JobManager,
        processor: JobProcessor,
        config: JobConfigManager,
        lock_service: ProcessingLockService | None = None,
        job_timeout: float | None = None,
        instance_id: str | None = None,
    ):
        """Initialize worker.

        Args:
            manager: Job manager (store access)
            processor: Processor that performs the work for each job
            config: Job policy (interval, concurrency, backoff)
            lock_service: Lease held around each batch; None for single-instance deployments
            job_timeout: Per-job wall-clock budget in seconds (default: ``max_run_time``)
            instance_id: Lease owner name (default: random)
        """
        self.manager = manager
        self.processor = processor
        self.config = config
        self.lock_service = lock_service
        self.job_timeout = job_timeout or config.get_config().max_run_time
        self.instance_id = instance_id or f"worker-{uuid4().hex[:8]}"

        self._task: asyncio.Task | None = None
        self.batches_run = 0
        self.jobs_processed = 0
        self.jobs_failed = 0
        self.started_at: datetime | None = None
        self.last_run_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Start the polling loop as a background task.

        Returns:
            False if the loop was already running
        """
        if self.is_running:
            logger.warning("worker.already_running", instance_id=self.instance_id)
            return False

        self._task = asyncio.create_task(self._run_loop())
        self.started_at = utcnow()
        logger.info(
            "worker.started",
            instance_id=self.instance_id,
            poll_interval=self.config.get_processing_interval(),
            max_concurrent_jobs=self.config.get_max_concurrent_jobs(),
            job_timeout=self.job_timeout,
        )
        return True

    async def stop(self) -> bool:
        """Cancel the polling loop and wait for it to finish.

        Returns:
            False if the loop was not running
        """
        if not self.is_running:
            logger.warning("worker.not_running", instance_id=self.instance_id)
            return False

        self._task.cancel()  # type: ignore[union-attr]
        await asyncio.gather(self._task, return_exceptions=True)  # type: ignore[arg-type]
        self._task = None
        logger.info("worker.stopped", instance_id=self.instance_id)
        return True

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while True:
            try:
                await self.process_jobs(max_jobs=self.config.get_config().batch_size)
                consecutive_errors = 0
                await asyncio.sleep(self.config.get_processing_interval())

            except asyncio.CancelledError:
                # Propagate cancellation for graceful shutdown
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                consecutive_errors += 1
                delay = self.config.get_retry_delay(consecutive_errors)
                logger.error(
                    "worker.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    consecutive_errors=consecutive_errors,
                    retry_in_seconds=delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def process_jobs(
        self, max_jobs: int = 10, job_filter: JobFilter | None = None
    ) -> ProcessingSummary:
        """Process one batch of up to ``max_jobs`` pending jobs.

        Jobs in the batch run concurrently, at most ``max_concurrent_jobs`` at a
        time, and the call returns once every job has settled.

        Returns:
            Summary; ``skipped=1`` means the batch did not run at all (manager
            unhealthy, store unreadable, or lease held elsewhere)
        """
        if not self.manager.is_healthy():
            logger.warning("worker.batch_skipped", reason="manager_unhealthy")
            return ProcessingSummary(skipped=1)

        if self.lock_service is None:
            return await self._process_batch(max_jobs, job_filter)

        if not await self.lock_service.acquire(self.instance_id):
            logger.info("worker.batch_skipped", reason="lock_held")
            return ProcessingSummary(skipped=1)
        try:
            return await self._process_batch(max_jobs, job_filter)
        finally:
            await self.lock_service.release(self.instance_id)

    async def _process_batch(
        self, max_jobs: int, job_filter: JobFilter | None
    ) -> ProcessingSummary:
        pending = await self.manager.get_pending_jobs(job_filter, limit=max_jobs)
        if not pending:
            logger.error("worker.batch_skipped", reason="pending_query_failed", error=pending.error)
            return ProcessingSummary(skipped=1)

        jobs: list[Job] = pending.value  # type: ignore[assignment]
        self.batches_run += 1
        self.last_run_at = utcnow()
        if not jobs:
            logger.debug("worker.queue_empty")
            return ProcessingSummary()

        semaphore = asyncio.Semaphore(self.config.get_max_concurrent_jobs())

        async def _bounded(job: Job) -> bool:
            async with semaphore:
                return await self._run_job(job)

        results = await asyncio.gather(*(_bounded(job) for job in jobs))

        summary = ProcessingSummary(
            processed=sum(1 for ok in results if ok),
            errors=sum(1 for ok in results if not ok),
        )
        logger.info("worker.batch_completed", fetched=len(jobs), **summary.to_dict())
        return summary

    async def _run_job(self, job: Job) -> bool:
        """Run one job under the timeout; any failure goes through the retry path."""
        job_type = JobType(job.type).value
        try:
            await asyncio.wait_for(self.processor.process_job(job), timeout=self.job_timeout)
            self.jobs_processed += 1
            return True
        except asyncio.TimeoutError:
            error_message = f"Job processing timed out after {self.job_timeout}s"
            error_type = "TimeoutError"
        except Exception as e:
            error_message = str(e) or type(e).__name__
            error_type = type(e).__name__

        self.jobs_failed += 1
        logger.error(
            "worker.job_failed",
            job_id=str(job.id),
            job_type=job_type,
            error_type=error_type,
            error_message=error_message,
        )
        await self.manager.mark_job_failed(job.id, error_message, should_retry=True)
        return False

    async def process_job_by_id(self, job_id: UUID) -> bool:
        """Process exactly one job, which must currently be pending."""
        outcome = await self.manager.get_job_status(job_id)
        if not outcome:
            logger.warning("worker.job_not_found", job_id=str(job_id), error=outcome.error)
            return False

        job: Job = outcome.value  # type: ignore[assignment]
        if job.status != JobStatus.PENDING:
            logger.warning(
                "worker.job_not_pending", job_id=str(job_id), status=JobStatus(job.status).value
            )
            return False

        return await self._run_job(job)

    async def get_queue_status(self) -> dict[str, Any] | None:
        """Queue counts plus processor and worker stats, or None if the store is unreadable."""
        stats = await self.manager.get_job_stats()
        if not stats:
            return None
        return {
            "queue": stats.value,
            "processor": self.processor.get_processing_stats(),
            "worker": self.get_stats(),
        }

    def get_stats(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "batches_run": self.batches_run,
            "jobs_processed": self.jobs_processed,
            "jobs_failed": self.jobs_failed,
            "job_timeout": self.job_timeout,
            "lock_enabled": self.lock_service is not None,
        }

    def is_healthy(self) -> bool:
        return self.manager.is_healthy() and self.processor.is_healthy()

    async def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete old terminal jobs through the manager; 0 if the store is unreadable.

        Defaults to the configured ``job_retention_days``.
        """
        if older_than_days is None:
            older_than_days = self.config.get_retention_days()
        outcome = await self.manager.cleanup_old_jobs(older_than_days)
        return outcome.unwrap_or(0)
