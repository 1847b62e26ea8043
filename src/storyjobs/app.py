"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyjobs.api.routes import health, jobs, processing
from storyjobs.core import timezone  # noqa: F401
from storyjobs.core.config import Settings, configure_logging
from storyjobs.core.database import setup_db_session
from storyjobs.core.dependencies import build_job_system
from storyjobs.services.generation.client import GenerationClient
from storyjobs.services.rate_limiter import RateLimiter
from storyjobs.workers.job_worker import JobWorker

logger = structlog.get_logger()


async def init_job_system(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None,
    generation_client: GenerationClient | None = None,
) -> None:
    """Build the job components and store them in app.state.

    Args:
        app: Application whose state receives the components
        settings: Application settings
        session_factory: Database session factory (None without DATABASE_URL)
        generation_client: Client override (default: built from settings)
    """
    system = await build_job_system(settings, session_factory, generation_client)

    app.state.session_factory = session_factory
    app.state.uow_factory = system.uow_factory
    app.state.job_config = system.config
    app.state.job_manager = system.manager
    app.state.job_monitor = system.monitor
    app.state.job_processor = system.processor
    app.state.job_worker = system.worker
    app.state.rate_limiter = RateLimiter(
        max_requests=settings.cron_rate_limit_per_minute, window_seconds=60
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, build job
      components, start the polling worker when automatic processing is enabled
    - Shutdown: Stop the worker
    """
    settings: Settings = app.state.settings

    # Configure logging
    configure_logging(settings)

    # Setup database session factory
    session_factory = None
    if settings.database_url:
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    else:
        logger.warning("startup.database_not_configured")

    await init_job_system(app, settings, session_factory)

    worker: JobWorker = app.state.job_worker
    if app.state.job_config.is_feature_enabled("auto_processing") and worker.is_healthy():
        await worker.start()
    else:
        logger.info(
            "startup.worker_not_started",
            auto_processing=app.state.job_config.is_feature_enabled("auto_processing"),
            healthy=worker.is_healthy(),
        )

    db_host = settings.database_url.split("@")[-1] if settings.database_url else None
    logger.info("application.startup", db_url=db_host, environment=settings.app_env)

    yield

    # Shutdown: stop polling worker (in-flight jobs are cancelled and retried later)
    logger.info("application.shutdown")
    if worker.is_running:
        await worker.stop()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings override (default: loaded from environment)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="StoryJobs API",
        description="Background job lifecycle service for story and image generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routers (health before jobs so /api/jobs/health is not read as a job id)
    app.include_router(health.router)
    app.include_router(processing.router)
    app.include_router(jobs.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        session_factory = getattr(app.state, "session_factory", None)
        if session_factory is None:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {"type": "ConfigurationError", "message": "DATABASE_URL is not set"},
            }

        try:
            # Test database connection with simple query
            async with session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            # Log error and return unhealthy status
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
