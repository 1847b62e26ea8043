"""Wiring of the job components shared by the API process and the CLI."""

from dataclasses import dataclass
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyjobs.core.config import Settings
from storyjobs.services.generation.client import GenerationClient
from storyjobs.services.jobs.cache import MetricsCache
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.lock import ProcessingLockService
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.monitor import JobMonitor
from storyjobs.services.jobs.processor import GenerationProcessor
from storyjobs.uow import create_uow_factory
from storyjobs.workers.job_worker import JobWorker

logger = structlog.get_logger()


@dataclass
class JobSystem:
    uow_factory: Callable | None
    config: JobConfigManager
    manager: JobManager
    monitor: JobMonitor
    processor: GenerationProcessor
    worker: JobWorker


async def build_job_system(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None,
    generation_client: GenerationClient | None = None,
) -> JobSystem:
    """Build and initialize the job components.

    A missing database leaves the manager and monitor unhealthy instead of
    failing (outside production, where Settings already refuses to load).

    Args:
        settings: Application settings
        session_factory: Database session factory (None without DATABASE_URL)
        generation_client: Client override (default: built from settings)

    Returns:
        Initialized components, sharing one policy instance
    """
    uow_factory = create_uow_factory(session_factory) if session_factory else None

    job_config = JobConfigManager.from_settings(settings)
    for problem in job_config.validate_config():
        logger.warning("job_config.invalid", problem=problem)

    manager = JobManager(uow_factory, job_config)
    await manager.initialize()

    monitor = JobMonitor(uow_factory, job_config, MetricsCache(ttl_seconds=60))

    client = generation_client or GenerationClient(
        base_url=settings.generation_service_url,
        api_key=settings.generation_api_key,
        timeout=job_config.get_config().api_timeout,
    )
    processor = GenerationProcessor(manager, client)

    lock_service = None
    if settings.worker_lock_enabled and uow_factory is not None:
        lock_service = ProcessingLockService(
            uow_factory, ttl_seconds=settings.worker_lock_ttl_seconds
        )

    worker = JobWorker(manager, processor, job_config, lock_service=lock_service)

    logger.info("job_system.initialized", **job_config.get_config_summary())
    return JobSystem(
        uow_factory=uow_factory,
        config=job_config,
        manager=manager,
        monitor=monitor,
        processor=processor,
        worker=worker,
    )
