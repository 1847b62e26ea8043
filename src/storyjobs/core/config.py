"""Application configuration using Pydantic BaseSettings."""

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment (development | production | test)
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # External generation service (story, scenes, cartoon and panel images)
    generation_service_url: str = Field(default="", alias="GENERATION_SERVICE_URL")
    generation_api_key: str = Field(default="", alias="GENERATION_API_KEY")

    # Cron webhook receiver
    cron_webhook_secret: str = Field(default="", alias="CRON_WEBHOOK_SECRET")
    cron_rate_limit_per_minute: int = Field(default=10, alias="CRON_RATE_LIMIT_PER_MINUTE")

    # Worker lease (only needed when several worker instances can overlap)
    worker_lock_enabled: bool = Field(default=False, alias="WORKER_LOCK_ENABLED")
    worker_lock_ttl_seconds: int = Field(default=600, alias="WORKER_LOCK_TTL_SECONDS")

    # Job policy overrides (highest precedence over tier defaults)
    enable_auto_processing: bool | None = Field(default=None, alias="ENABLE_AUTO_PROCESSING")
    job_processing_interval_seconds: int | None = Field(
        default=None, alias="JOB_PROCESSING_INTERVAL_SECONDS"
    )
    max_concurrent_jobs: int | None = Field(default=None, alias="MAX_CONCURRENT_JOBS")
    max_jobs_per_user: int | None = Field(default=None, alias="MAX_JOBS_PER_USER")
    job_timeout_minutes: int | None = Field(default=None, alias="JOB_TIMEOUT_MINUTES")
    enable_priority_processing: bool | None = Field(
        default=None, alias="ENABLE_PRIORITY_PROCESSING"
    )
    monitoring_enabled: bool | None = Field(default=None, alias="MONITORING_ENABLED")
    job_retention_days: int | None = Field(default=None, alias="JOB_RETENTION_DAYS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Only production fails fast. In development and test environments a missing
        database leaves the job manager unhealthy instead of preventing startup.
        """
        if self.app_env != "production":
            return self

        missing = []

        if not self.database_url:
            missing.append("DATABASE_URL: PostgreSQL URL (postgresql+psycopg://...)")

        if not self.generation_service_url:
            missing.append("GENERATION_SERVICE_URL: Base URL of the generation service")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
