"""ProcessingLock repository for storyjobs.

Provides data access methods for named worker leases.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyjobs.models.processing_lock import ProcessingLock


class ProcessingLockRepository:
    """Repository for ProcessingLock rows (one row per lease name)."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_for_update(self, name: str) -> ProcessingLock | None:
        """Retrieve a lease row and lock it until the transaction ends.

        Args:
            name: Lease name

        Returns:
            ProcessingLock if the lease row exists, None otherwise
        """
        result = await self.session.execute(
            select(ProcessingLock)
            .where(ProcessingLock.name == name)  # type: ignore[arg-type]
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def save(self, lock: ProcessingLock) -> ProcessingLock:
        """Insert or update a lease row."""
        self.session.add(lock)
        await self.session.flush()
        return lock

    async def delete_owned(self, name: str, owner: str) -> bool:
        """Delete a lease row only if ``owner`` holds it.

        Returns:
            True if a row was deleted, False otherwise
        """
        result = await self.session.execute(
            delete(ProcessingLock).where(
                ProcessingLock.name == name,  # type: ignore[arg-type]
                ProcessingLock.owner == owner,  # type: ignore[arg-type]
            )
        )
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]
