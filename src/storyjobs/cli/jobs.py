"""CLI commands for operating the background job queue.

Usage:
    python -m storyjobs.cli COMMAND [OPTIONS]

Examples:
    # Process one batch of pending jobs
    python -m storyjobs.cli process --max-jobs 5

    # Process a single pending job
    python -m storyjobs.cli process --job-id 3b1f...

    # Delete terminal jobs older than 30 days
    python -m storyjobs.cli cleanup --days 30

    # Print the health report
    python -m storyjobs.cli health

    # List jobs stuck in processing
    python -m storyjobs.cli stuck
"""

import asyncio
import json
import sys
from argparse import ArgumentParser, Namespace
from uuid import UUID

import structlog

from storyjobs.core import timezone  # noqa: F401
from storyjobs.core.config import Settings, configure_logging
from storyjobs.core.database import setup_db_session
from storyjobs.core.dependencies import JobSystem, build_job_system
from storyjobs.models.job import JobType
from storyjobs.repositories.job import JobFilter

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Operate the background job queue",
        epilog="Reads DATABASE_URL and job policy overrides from the environment",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Process one batch of pending jobs")
    process.add_argument(
        "--max-jobs", type=int, default=10, help="Maximum jobs in the batch (default: 10)"
    )
    process.add_argument("--job-id", type=UUID, help="Process only this pending job")
    process.add_argument(
        "--type",
        dest="job_types",
        action="append",
        type=JobType,
        help="Restrict to a job type (repeatable): " + ", ".join(t.value for t in JobType),
    )

    cleanup = subparsers.add_parser("cleanup", help="Delete old terminal jobs")
    cleanup.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention in days (default: the configured job retention)",
    )

    subparsers.add_parser("health", help="Print the job system health report")
    subparsers.add_parser("stuck", help="List jobs stuck in processing")

    return parser.parse_args(argv)


async def run_command(args: Namespace, system: JobSystem) -> int:
    """Execute one command against initialized components.

    Returns:
        Exit code: 0 (success), 1 (error), 2 (completed with job errors or warnings)
    """
    if not system.manager.is_healthy():
        print("Error: job store is not available (check DATABASE_URL)", file=sys.stderr)
        return 1

    if args.command == "process":
        if args.job_id is not None:
            success = await system.worker.process_job_by_id(args.job_id)
            print(f"Job {args.job_id}: {'processed' if success else 'failed'}")
            return 0 if success else 2

        job_filter = JobFilter(types=args.job_types) if args.job_types else None
        summary = await system.worker.process_jobs(args.max_jobs, job_filter)
        print(
            f"Processed: {summary.processed}  Errors: {summary.errors}  Skipped: {summary.skipped}"
        )
        return 2 if summary.errors or summary.skipped else 0

    if args.command == "cleanup":
        days = args.days if args.days is not None else system.config.get_retention_days()
        outcome = await system.monitor.cleanup_old_jobs(days)
        if not outcome:
            print(f"Error: cleanup failed ({outcome.detail})", file=sys.stderr)
            return 1
        print(f"Deleted {outcome.value} jobs older than {days} days")
        return 0

    if args.command == "health":
        report = await system.monitor.generate_health_report()
        if not report:
            print(f"Error: health report failed ({report.detail})", file=sys.stderr)
            return 1
        print(json.dumps(report.value.model_dump(mode="json"), indent=2))  # type: ignore[union-attr]
        return 0 if report.value.system_health.status == "healthy" else 2  # type: ignore[union-attr]

    if args.command == "stuck":
        stuck = await system.monitor.get_stuck_jobs()
        if not stuck:
            print(f"Error: stuck job query failed ({stuck.detail})", file=sys.stderr)
            return 1
        for job in stuck.value:  # type: ignore[union-attr]
            print(
                f"{job.id}  {JobType(job.type).value:<17} {job.progress:>3}%  "
                f"updated {job.updated_at.isoformat()}  {job.current_step or ''}"
            )
        print(f"{len(stuck.value)} stuck job(s)")  # type: ignore[arg-type]
        return 2 if stuck.value else 0

    return 1


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async)."""
    args = parse_args(argv)

    # Initialize settings and logging
    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", command=args.command)

    session_factory = None
    if settings.database_url:
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)

    try:
        system = await build_job_system(settings, session_factory)
        return await run_command(args, system)

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
