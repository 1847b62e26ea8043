"""Job processors: turn a pending job into a completed (or failed) one.

The worker hands each job to ``JobProcessor.process_job``. Processors report
progress through the manager and finish by marking the job completed. Errors
are raised back to the worker, which decides about retries, except permanent
errors, which the processor records itself so they are not retried.
"""

import time
from datetime import datetime
from typing import Any

import structlog

from storyjobs.core.timezone import utcnow
from storyjobs.models.job import Job, JobType
from storyjobs.services.exceptions import JobCancelledError, PermanentError, TransientError
from storyjobs.services.generation.client import GenerationClient
from storyjobs.services.jobs.job_types import get_job_type_spec
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.outcome import StoreError

logger = structlog.get_logger(__name__)


class ProgressReporter:
    """Progress checkpoint for one job.

    Every report doubles as a cancellation check: once the job is terminal
    (cancelled by a user, or deleted) the manager refuses the write and the
    reporter raises ``JobCancelledError`` to stop the processor.
    """

    def __init__(self, manager: JobManager, job_id):
        self.manager = manager
        self.job_id = job_id
        self.last_progress = 0

    async def report(self, progress: int, step: str | None = None) -> None:
        outcome = await self.manager.update_job_progress(self.job_id, progress, step)
        if outcome.error in (StoreError.TERMINAL_STATE, StoreError.NOT_FOUND):
            raise JobCancelledError(f"Job {self.job_id} is no longer active")
        if not outcome:
            # Progress is advisory; a failed write must not abort the job.
            logger.warning(
                "job.progress_not_recorded", job_id=str(self.job_id), error=outcome.error
            )
            return
        self.last_progress = progress


class JobProcessor:
    """Base processor with bookkeeping shared by all implementations.

    Subclasses implement ``run(job, reporter)`` and return the job's
    ``result_data``.
    """

    def __init__(self, manager: JobManager):
        self.manager = manager
        self.jobs_processed = 0
        self.jobs_succeeded = 0
        self.jobs_failed = 0
        self.jobs_cancelled = 0
        self.total_duration = 0.0
        self.last_processed_at: datetime | None = None

    async def run(self, job: Job, reporter: ProgressReporter) -> dict[str, Any]:
        raise NotImplementedError

    async def process_job(self, job: Job) -> None:
        """Process one job end to end.

        Raises:
            TransientError: Work or bookkeeping failed in a way worth retrying
            PermanentError: Work cannot succeed; the job is already marked failed
            Exception: Anything unexpected, for the worker to record
        """
        start_time = time.monotonic()
        job_type = JobType(job.type).value
        logger.info("job.processing.started", job_id=str(job.id), job_type=job_type)

        self.jobs_processed += 1
        self.last_processed_at = utcnow()
        reporter = ProgressReporter(self.manager, job.id)
        try:
            try:
                result = await self.run(job, reporter)
            except JobCancelledError:
                self.jobs_cancelled += 1
                logger.info("job.processing.cancelled", job_id=str(job.id), job_type=job_type)
                return
            except PermanentError as e:
                self.jobs_failed += 1
                await self.manager.mark_job_failed(job.id, str(e), should_retry=False)
                logger.error(
                    "job.processing.failed",
                    job_id=str(job.id),
                    job_type=job_type,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                raise
            except Exception:
                self.jobs_failed += 1
                raise

            completed = await self.manager.mark_job_completed(job.id, result)
            if completed.error == StoreError.TERMINAL_STATE:
                self.jobs_cancelled += 1
                logger.info("job.processing.cancelled", job_id=str(job.id), job_type=job_type)
                return
            if not completed:
                self.jobs_failed += 1
                raise TransientError(f"Could not record completion: {completed.detail}")

            self.jobs_succeeded += 1
            logger.info(
                "job.processing.succeeded",
                job_id=str(job.id),
                job_type=job_type,
                duration_seconds=time.monotonic() - start_time,
            )
        finally:
            self.total_duration += time.monotonic() - start_time

    def get_processing_stats(self) -> dict[str, Any]:
        return {
            "jobs_processed": self.jobs_processed,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_failed": self.jobs_failed,
            "jobs_cancelled": self.jobs_cancelled,
            "average_duration_seconds": (
                self.total_duration / self.jobs_processed if self.jobs_processed else 0.0
            ),
            "last_processed_at": (
                self.last_processed_at.isoformat() if self.last_processed_at else None
            ),
            "healthy": self.is_healthy(),
        }

    def is_healthy(self) -> bool:
        return self.manager.is_healthy()


class GenerationProcessor(JobProcessor):
    """Processor that delegates the work for every job type to the generation service."""

    def __init__(self, manager: JobManager, client: GenerationClient):
        super().__init__(manager)
        self.client = client

    async def run(self, job: Job, reporter: ProgressReporter) -> dict[str, Any]:
        spec = get_job_type_spec(job.type)
        first_bound = spec.phases[0][0]
        finalize_bound = spec.phases[-2][0]

        await reporter.report(5, spec.current_phase(5))
        await reporter.report(first_bound, spec.current_phase(first_bound))

        raw_result = await self.client.generate(spec.job_type, job.id, job.input_data)

        await reporter.report(finalize_bound, spec.current_phase(finalize_bound))
        return spec.format_result(raw_result)

    def is_healthy(self) -> bool:
        return super().is_healthy() and self.client.is_configured
