"""Background workers for async processing tasks."""

from storyjobs.workers.job_worker import JobWorker, ProcessingSummary

__all__ = [
    "JobWorker",
    "ProcessingSummary",
]
