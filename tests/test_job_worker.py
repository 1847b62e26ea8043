"""JobWorker tests.

Processors here are small in-test subclasses, so the tests exercise the
worker's own rules:
- Batches drain pending jobs oldest first and report a summary
- Failures and timeouts go through the retry path
- Unhealthy manager or held lease skips the batch
- Single-job processing requires a pending job
- The polling loop starts and stops once
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from storyjobs.models.job import JobStatus, JobType
from storyjobs.repositories.job import JobFilter
from storyjobs.services.exceptions import GenerationAuthError, GenerationNetworkError
from storyjobs.services.jobs.lock import ProcessingLockService
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.processor import JobProcessor
from storyjobs.workers.job_worker import JobWorker, ProcessingSummary


class RecordingProcessor(JobProcessor):
    """Completes every job and remembers the order it saw them in."""

    def __init__(self, manager):
        super().__init__(manager)
        self.seen = []

    async def run(self, job, reporter):
        self.seen.append(job.input_data.get("n"))
        await reporter.report(50, "Halfway")
        return {"n": job.input_data.get("n")}


class FailingProcessor(JobProcessor):
    def __init__(self, manager, error: Exception):
        super().__init__(manager)
        self.error = error

    async def run(self, job, reporter):
        await reporter.report(10)
        raise self.error


class HangingProcessor(JobProcessor):
    """Never finishes; the worker's timeout has to stop it."""

    async def run(self, job, reporter):
        await reporter.report(10, "Waiting on generation service")
        await asyncio.Event().wait()
        return {}


@pytest.mark.asyncio
async def test_process_jobs_completes_batch_in_fifo_order(manager, job_config):
    processor = RecordingProcessor(manager)
    worker = JobWorker(manager, processor, job_config)
    ids = [(await manager.create_scene_job({"n": n})).value for n in range(3)]

    summary = await worker.process_jobs(max_jobs=10)

    assert summary == ProcessingSummary(processed=3, errors=0, skipped=0)
    assert processor.seen == [0, 1, 2]
    for job_id in ids:
        job = (await manager.get_job_status(job_id)).value
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
    assert worker.get_stats()["jobs_processed"] == 3


@pytest.mark.asyncio
async def test_process_jobs_respects_max_jobs_and_filter(manager, job_config):
    processor = RecordingProcessor(manager)
    worker = JobWorker(manager, processor, job_config)
    await manager.create_scene_job({"n": 1})
    await manager.create_image_job({"n": 2})
    await manager.create_image_job({"n": 3})

    summary = await worker.process_jobs(
        max_jobs=1, job_filter=JobFilter(types=[JobType.IMAGE_GENERATION])
    )

    assert summary.processed == 1
    assert processor.seen == [2]
    stats = (await manager.get_job_stats()).value
    assert stats["pending"] == 2


@pytest.mark.asyncio
async def test_empty_queue(manager, job_config):
    worker = JobWorker(manager, RecordingProcessor(manager), job_config)

    summary = await worker.process_jobs()

    assert summary == ProcessingSummary()
    assert worker.batches_run == 1


@pytest.mark.asyncio
async def test_transient_failure_requeues_job(manager, job_config):
    worker = JobWorker(
        manager, FailingProcessor(manager, GenerationNetworkError("503 from service")), job_config
    )
    job_id = (await manager.create_scene_job({})).value

    summary = await worker.process_jobs()

    assert summary.errors == 1
    job = (await manager.get_job_status(job_id)).value
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1
    assert job.error_message == "503 from service"


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(manager, job_config):
    """The processor fails the job; the worker's retry call is a terminal no-op."""
    worker = JobWorker(
        manager, FailingProcessor(manager, GenerationAuthError("bad key")), job_config
    )
    job_id = (await manager.create_scene_job({})).value

    summary = await worker.process_jobs()

    assert summary.errors == 1
    job = (await manager.get_job_status(job_id)).value
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 1
    assert job.error_message == "bad key"


@pytest.mark.asyncio
async def test_timeout_sends_job_through_retry(manager, job_config):
    worker = JobWorker(manager, HangingProcessor(manager), job_config, job_timeout=0.2)
    job_id = (await manager.create_scene_job({})).value

    summary = await worker.process_jobs()

    assert summary.errors == 1
    job = (await manager.get_job_status(job_id)).value
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1
    assert "timed out" in job.error_message


@pytest.mark.asyncio
async def test_retries_exhaust_into_failed(manager, job_config):
    """Repeated batches against a failing service end with a failed job."""
    worker = JobWorker(
        manager, FailingProcessor(manager, GenerationNetworkError("down")), job_config
    )
    job_id = (await manager.create_scene_job({})).value  # max_retries = 3

    for _ in range(4):
        await worker.process_jobs()

    job = (await manager.get_job_status(job_id)).value
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 4
    # Nothing left to pick up
    assert await worker.process_jobs() == ProcessingSummary()


@pytest.mark.asyncio
async def test_unhealthy_manager_skips_batch(job_config):
    manager = JobManager(None, job_config)
    worker = JobWorker(manager, RecordingProcessor(manager), job_config)

    assert await worker.process_jobs() == ProcessingSummary(skipped=1)
    assert worker.is_healthy() is False
    assert await worker.get_queue_status() is None
    assert await worker.cleanup() == 0


@pytest.mark.asyncio
async def test_held_lease_skips_batch(manager, job_config, uow_factory):
    lock_service = ProcessingLockService(uow_factory, ttl_seconds=600)
    assert await lock_service.acquire("other-instance")
    processor = RecordingProcessor(manager)
    worker = JobWorker(
        manager, processor, job_config, lock_service=lock_service, instance_id="this-instance"
    )
    await manager.create_scene_job({"n": 1})

    assert await worker.process_jobs() == ProcessingSummary(skipped=1)
    assert processor.seen == []

    await lock_service.release("other-instance")
    summary = await worker.process_jobs()
    assert summary.processed == 1
    # Released after the batch
    assert await lock_service.acquire("other-instance")


@pytest.mark.asyncio
async def test_unreadable_lease_skips_batch(manager, job_config, uow_factory, monkeypatch):
    """A store error while taking the lease is reported as a skipped batch."""

    async def broken_get_for_update(self, name):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(
        "storyjobs.repositories.processing_lock.ProcessingLockRepository.get_for_update",
        broken_get_for_update,
    )
    processor = RecordingProcessor(manager)
    worker = JobWorker(
        manager,
        processor,
        job_config,
        lock_service=ProcessingLockService(uow_factory),
        instance_id="this-instance",
    )
    await manager.create_scene_job({"n": 1})

    assert await worker.process_jobs() == ProcessingSummary(skipped=1)
    assert processor.seen == []


@pytest.mark.asyncio
async def test_failed_lease_release_keeps_batch_summary(
    manager, job_config, uow_factory, monkeypatch
):
    async def broken_delete_owned(self, name, owner):
        raise OperationalError("DELETE", {}, Exception("connection reset"))

    monkeypatch.setattr(
        "storyjobs.repositories.processing_lock.ProcessingLockRepository.delete_owned",
        broken_delete_owned,
    )
    worker = JobWorker(
        manager,
        RecordingProcessor(manager),
        job_config,
        lock_service=ProcessingLockService(uow_factory),
        instance_id="this-instance",
    )
    await manager.create_scene_job({"n": 1})

    summary = await worker.process_jobs()

    assert summary == ProcessingSummary(processed=1)


@pytest.mark.asyncio
async def test_process_job_by_id(manager, job_config):
    worker = JobWorker(manager, RecordingProcessor(manager), job_config)
    job_id = (await manager.create_scene_job({"n": 7})).value

    assert await worker.process_job_by_id(job_id) is True
    job = (await manager.get_job_status(job_id)).value
    assert job.status == JobStatus.COMPLETED

    # Not pending any more
    assert await worker.process_job_by_id(job_id) is False
    assert await worker.process_job_by_id(uuid4()) is False


@pytest.mark.asyncio
async def test_queue_status(manager, job_config):
    worker = JobWorker(manager, RecordingProcessor(manager), job_config, instance_id="w-1")
    await manager.create_scene_job({})

    status = await worker.get_queue_status()

    assert status["queue"]["pending"] == 1
    assert status["processor"]["jobs_processed"] == 0
    assert status["worker"]["instance_id"] == "w-1"
    assert status["worker"]["lock_enabled"] is False


@pytest.mark.asyncio
async def test_start_and_stop_polling_loop(manager, job_config):
    job_config.update_config(processing_interval=0.05)
    worker = JobWorker(manager, RecordingProcessor(manager), job_config)
    job_id = (await manager.create_scene_job({"n": 1})).value

    assert await worker.start() is True
    assert await worker.start() is False
    assert worker.is_running

    for _ in range(100):
        job = (await manager.get_job_status(job_id)).value
        if job.status == JobStatus.COMPLETED:
            break
        await asyncio.sleep(0.05)
    assert job.status == JobStatus.COMPLETED

    assert await worker.stop() is True
    assert await worker.stop() is False
    assert not worker.is_running


@pytest.mark.asyncio
async def test_cleanup_delegates_to_manager(manager, job_config):
    worker = JobWorker(manager, RecordingProcessor(manager), job_config)
    job_id = (await manager.create_scene_job({})).value
    await manager.cancel_job(job_id)

    # Cancelled just now, so a one-day retention keeps it
    assert await worker.cleanup(older_than_days=1) == 0
