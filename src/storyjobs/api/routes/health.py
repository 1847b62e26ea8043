"""Job system health endpoint.

GET /api/jobs/health returns the monitor's health report plus configuration
and operational flags. It answers 503 when the core components are down or
the health verdict is critical, so load balancers and cron gates can act on
the status code alone.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from storyjobs.api.dependencies import get_job_config, get_job_manager, get_job_monitor
from storyjobs.core.timezone import utcnow
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.manager import JobManager
from storyjobs.services.jobs.monitor import HealthReport, JobMonitor

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["health"])

STATUS_MESSAGES = {
    "healthy": "All systems operational",
    "warning": "System operational with minor issues",
    "critical": "System experiencing critical issues",
}


def _report_body(report: HealthReport) -> dict[str, Any]:
    system_health = report.system_health
    statistics = report.job_statistics
    return {
        "status": system_health.status,
        "message": STATUS_MESSAGES[system_health.status],
        "timestamp": report.timestamp.isoformat(),
        "metrics": {
            "queue_depth": statistics.queue_depth,
            "processing_capacity": system_health.processing_capacity,
            "success_rate": statistics.success_rate,
            "average_processing_time": statistics.average_processing_time,
            "jobs_per_hour": report.performance_metrics.jobs_per_hour,
            "error_rate": system_health.error_rate,
        },
        "statistics": {
            "jobs": statistics.model_dump(mode="json"),
            "by_type": {
                name: stats.model_dump(mode="json")
                for name, stats in report.type_statistics.items()
            },
            "performance": report.performance_metrics.model_dump(mode="json"),
        },
        "health": {
            "status": system_health.status,
            "alerts": system_health.alerts,
            "recommendations": system_health.recommendations,
            "stuck_jobs_count": len(report.stuck_jobs),
            "stuck_jobs": report.stuck_jobs,
        },
    }


@router.get("/health")
async def job_system_health(
    monitor: JobMonitor = Depends(get_job_monitor),
    manager: JobManager = Depends(get_job_manager),
    job_config: JobConfigManager = Depends(get_job_config),
) -> JSONResponse:
    """Health report for the job system.

    Returns:
        200: healthy or warning verdict (or monitoring degraded but core up)
        503: core components down, or critical verdict
    """
    system_status = {
        "monitor": monitor.is_healthy(),
        "manager": manager.is_healthy(),
        "config": not job_config.validate_config(),
        "timestamp": utcnow().isoformat(),
    }

    if not system_status["monitor"] or not system_status["manager"]:
        logger.error("health.core_unavailable", **system_status)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "critical",
                "message": "Core job systems are not operational",
                "system_status": system_status,
                "recommendations": [
                    "Check database connectivity",
                    "Verify environment variables",
                    "Restart job processing services",
                ],
            },
        )

    config_summary = job_config.get_config_summary()
    outcome = await monitor.generate_health_report()
    if not outcome:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "warning",
                "message": "Health monitoring is experiencing issues",
                "system_status": system_status,
                "config_summary": config_summary,
                "recommendations": [
                    "Check monitoring system connectivity",
                    "Verify database access permissions",
                ],
            },
        )

    report: HealthReport = outcome.value  # type: ignore[assignment]
    body = _report_body(report)
    body["system_status"] = system_status
    body["config_summary"] = config_summary
    body["operational"] = {
        "auto_processing_enabled": job_config.is_feature_enabled("auto_processing"),
        "metrics_collection_enabled": job_config.is_feature_enabled("metrics_collection"),
        "processing_interval": job_config.get_processing_interval(),
        "max_concurrent_jobs": job_config.get_max_concurrent_jobs(),
    }

    http_status = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if report.system_health.status == "critical"
        else status.HTTP_200_OK
    )
    logger.info("health.checked", status=report.system_health.status)
    return JSONResponse(status_code=http_status, content=body)
