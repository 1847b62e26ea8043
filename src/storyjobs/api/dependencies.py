"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Access to the job components built in the application lifespan
- Cron webhook authentication
"""

from typing import Annotated

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from storyjobs.core.config import Settings
from storyjobs.services.cron_webhook import CronProvider, detect_cron_provider, validate_cron_secret
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.monitor import JobMonitor
from storyjobs.services.rate_limiter import RateLimiter
from storyjobs.workers.job_worker import JobWorker

logger = structlog.get_logger()


def get_settings(request: Request) -> Settings:
    """Get application settings loaded at startup."""
    return request.app.state.settings


def get_job_config(request: Request) -> JobConfigManager:
    return request.app.state.job_config


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def get_job_monitor(request: Request) -> JobMonitor:
    return request.app.state.job_monitor


def get_job_worker(request: Request) -> JobWorker:
    return request.app.state.job_worker


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


async def validate_cron_webhook(
    user_agent: Annotated[str | None, Header()] = None,
    x_webhook_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> CronProvider:
    """Authenticate a cron trigger before any processing happens.

    The X-Webhook-Secret header must match CRON_WEBHOOK_SECRET. When no secret
    is configured the request is allowed outside production (with a warning)
    and rejected in production.

    Args:
        user_agent: User-Agent header, used to identify the cron provider
        x_webhook_secret: Shared secret from X-Webhook-Secret header
        settings: Application settings (injected via dependency)

    Returns:
        Detected cron provider (decides the per-trigger job cap)

    Raises:
        HTTPException: 401 Unauthorized if the secret is missing or invalid
    """
    provider = detect_cron_provider(user_agent)

    if not settings.cron_webhook_secret:
        if settings.app_env == "production":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Webhook secret is not configured",
            )
        logger.warning("cron.secret_not_configured", provider=provider.name)
        return provider

    if not x_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Webhook-Secret header"
        )

    if not validate_cron_secret(x_webhook_secret, settings.cron_webhook_secret):
        logger.warning("cron.invalid_secret", provider=provider.name)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    return provider
