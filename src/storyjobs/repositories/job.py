"""Job repository for storyjobs.

Provides data access methods for Job entities with worker coordination via FOR UPDATE SKIP LOCKED.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyjobs.models.job import TERMINAL_STATUSES, Job, JobStatus, JobType


@dataclass
class JobFilter:
    """Optional criteria for job queries.

    ``job_type`` and ``types`` may be combined; a job matches if its type is
    ``job_type`` or any entry in ``types``.
    """

    user_id: UUID | None = None
    job_type: JobType | None = None
    types: list[JobType] = field(default_factory=list)
    status: JobStatus | None = None
    limit: int | None = None
    offset: int | None = None

    def allowed_types(self) -> list[JobType]:
        allowed = list(self.types)
        if self.job_type is not None and self.job_type not in allowed:
            allowed.append(self.job_type)
        return allowed


class JobRepository:
    """Repository for Job entities.

    Methods include worker coordination queries using FOR UPDATE SKIP LOCKED
    to ensure non-overlapping job distribution across concurrent workers.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    def _apply_filter(self, stmt, job_filter: JobFilter):
        if job_filter.user_id is not None:
            stmt = stmt.where(Job.user_id == job_filter.user_id)  # type: ignore[arg-type]
        allowed_types = job_filter.allowed_types()
        if allowed_types:
            stmt = stmt.where(Job.type.in_(allowed_types))  # type: ignore[attr-defined]
        if job_filter.status is not None:
            stmt = stmt.where(Job.status == job_filter.status)  # type: ignore[arg-type]
        return stmt

    async def add(self, job: Job) -> Job:
        """Persist new job to database.

        Args:
            job: Job entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def save(self, job: Job) -> Job:
        """Flush in-place changes of an attached job and reload it."""
        self.session.add(job)
        await self.session.flush()
        await self.session.refresh(job)
        return job

    async def get_by_id(self, job_id: UUID, for_update: bool = False) -> Job | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier
            for_update: Lock the row until the transaction ends (ignored by SQLite)

        Returns:
            Job if found, None otherwise
        """
        stmt = select(Job).where(Job.id == job_id)  # type: ignore[arg-type]
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending(self, job_filter: JobFilter | None = None, limit: int = 50) -> list[Job]:
        """Retrieve pending jobs oldest first with row-level locking.

        Query explanation:
        - WHERE status = 'pending': Jobs waiting for a worker (new or retrying)
        - ORDER BY created_at ASC: FIFO fairness
        - LIMIT: Batch size for worker
        - FOR UPDATE SKIP LOCKED: Skip rows another worker holds right now

        Args:
            job_filter: Optional user/type criteria (status is forced to pending)
            limit: Maximum number of jobs to retrieve (default: 50)

        Returns:
            List of pending jobs, oldest first
        """
        stmt = select(Job).where(Job.status == JobStatus.PENDING)  # type: ignore[arg-type]
        if job_filter is not None:
            stmt = self._apply_filter(stmt, replace(job_filter, status=None))
        result = await self.session.execute(
            stmt.order_by(Job.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def find(self, job_filter: JobFilter) -> list[Job]:
        """Retrieve jobs matching the filter, newest first.

        Args:
            job_filter: User/type/status criteria with limit/offset pagination

        Returns:
            List of jobs ordered by created_at timestamp (newest first)
        """
        stmt = self._apply_filter(select(Job), job_filter).order_by(
            Job.created_at.desc()  # type: ignore[attr-defined]
        )
        if job_filter.offset:
            stmt = stmt.offset(job_filter.offset).limit(job_filter.limit or 50)
        elif job_filter.limit:
            stmt = stmt.limit(job_filter.limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, job_filter: JobFilter) -> int:
        """Count jobs matching the filter, ignoring limit/offset."""
        stmt = self._apply_filter(select(func.count(Job.id)), job_filter)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_by_status(self, user_id: UUID | None = None) -> dict[JobStatus, int]:
        """Count jobs grouped by status.

        Args:
            user_id: Restrict counts to one owner (optional)

        Returns:
            Mapping of status to count (statuses with no rows are absent)
        """
        stmt = select(Job.status, func.count(Job.id)).group_by(Job.status)  # type: ignore[arg-type]
        if user_id is not None:
            stmt = stmt.where(Job.user_id == user_id)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return {JobStatus(status): count for status, count in result.all()}

    async def count_by_type_and_status(self) -> list[tuple[JobType, JobStatus, int]]:
        """Count jobs grouped by (type, status)."""
        result = await self.session.execute(
            select(Job.type, Job.status, func.count(Job.id)).group_by(Job.type, Job.status)  # type: ignore[arg-type]
        )
        return [(JobType(t), JobStatus(s), count) for t, s, count in result.all()]

    async def get_oldest_pending_created_at(self) -> datetime | None:
        """Return creation time of the oldest pending job, if any."""
        result = await self.session.execute(
            select(func.min(Job.created_at)).where(Job.status == JobStatus.PENDING)  # type: ignore[arg-type]
        )
        return result.scalar()

    async def get_completion_timings(self) -> list[tuple[JobType, datetime, datetime]]:
        """Return (type, started_at, completed_at) for completed jobs with both timestamps."""
        result = await self.session.execute(
            select(Job.type, Job.started_at, Job.completed_at).where(  # type: ignore[arg-type]
                Job.status == JobStatus.COMPLETED,  # type: ignore[arg-type]
                Job.started_at.is_not(None),  # type: ignore[union-attr]
                Job.completed_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        return [(JobType(t), started, completed) for t, started, completed in result.all()]

    async def get_created_since(self, since: datetime) -> list[Job]:
        """Retrieve every job created at or after ``since``."""
        result = await self.session.execute(
            select(Job).where(Job.created_at >= since)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def get_stale_processing(self, updated_before: datetime) -> list[Job]:
        """Retrieve processing jobs whose last update is older than the cutoff.

        Args:
            updated_before: Jobs with updated_at strictly before this are returned

        Returns:
            Stale processing jobs, least recently updated first
        """
        result = await self.session.execute(
            select(Job)
            .where(
                Job.status == JobStatus.PROCESSING,  # type: ignore[arg-type]
                Job.updated_at < updated_before,  # type: ignore[arg-type]
            )
            .order_by(Job.updated_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs whose completed_at is older than cutoff.

        Non-terminal jobs are never deleted, regardless of age.

        Args:
            cutoff: Jobs completed strictly before this time are removed

        Returns:
            Number of deleted rows
        """
        result = await self.session.execute(
            delete(Job)
            .where(
                Job.status.in_(TERMINAL_STATUSES),  # type: ignore[attr-defined]
                Job.completed_at < cutoff,  # type: ignore[operator]
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]
