"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from storyjobs.models.job import (
    TERMINAL_STATUSES,
    InvalidStateTransition,
    Job,
    JobStatus,
    JobType,
)
from storyjobs.models.processing_lock import ProcessingLock

__all__ = [
    "Job",
    "JobStatus",
    "JobType",
    "TERMINAL_STATUSES",
    "InvalidStateTransition",
    "ProcessingLock",
]
