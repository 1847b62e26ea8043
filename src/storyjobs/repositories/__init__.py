"""Repository layer for storyjobs.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from storyjobs.repositories.job import JobFilter, JobRepository
from storyjobs.repositories.processing_lock import ProcessingLockRepository

__all__ = [
    "JobFilter",
    "JobRepository",
    "ProcessingLockRepository",
]
