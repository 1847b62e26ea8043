"""Named processing lease for deployments that run more than one worker.

Scheduled triggers can overlap (a slow batch still running when the next cron
fires, or two instances behind a load balancer). Holding the lease around each
batch keeps them from draining the queue at the same time. A lease that is not
released expires after ``ttl_seconds`` so a crashed holder cannot block
processing forever.
"""

from datetime import timedelta
from typing import Callable

import structlog
from sqlalchemy.exc import IntegrityError

from storyjobs.core.timezone import utcnow
from storyjobs.models.processing_lock import ProcessingLock
from storyjobs.services.jobs.manager import STORE_ERRORS

logger = structlog.get_logger(__name__)

JOB_PROCESSING_LOCK = "job_processing"


class ProcessingLockService:
    def __init__(
        self, uow_factory: Callable, ttl_seconds: float = 600, name: str = JOB_PROCESSING_LOCK
    ):
        self._uow_factory = uow_factory
        self.ttl_seconds = ttl_seconds
        self.name = name

    async def acquire(self, owner: str) -> bool:
        """Take the lease for ``owner``.

        Succeeds when the lease is free, expired, or already held by ``owner``
        (which extends it).

        Returns:
            True if ``owner`` now holds the lease; False when it is held elsewhere
            or the store could not be reached
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        try:
            async with await self._uow_factory() as uow:
                lock = await uow.locks.get_for_update(self.name)
                if lock is None:
                    lock = ProcessingLock(
                        name=self.name, owner=owner, acquired_at=now, expires_at=expires_at
                    )
                elif lock.owner == owner or lock.is_expired(now):
                    if lock.owner != owner:
                        logger.warning(
                            "lock.expired_takeover",
                            lock=self.name,
                            previous_owner=lock.owner,
                            owner=owner,
                        )
                    lock.owner = owner
                    lock.acquired_at = now
                    lock.expires_at = expires_at
                else:
                    logger.info(
                        "lock.busy",
                        lock=self.name,
                        holder=lock.owner,
                        expires_at=lock.expires_at.isoformat(),
                    )
                    return False
                await uow.locks.save(lock)
        except IntegrityError:
            # Another instance inserted the row between our read and insert
            logger.info("lock.busy", lock=self.name, reason="concurrent_acquire")
            return False
        except STORE_ERRORS as e:
            logger.error(
                "lock.acquire_failed", lock=self.name, error=str(e), error_type=type(e).__name__
            )
            return False

        logger.debug("lock.acquired", lock=self.name, owner=owner)
        return True

    async def release(self, owner: str) -> bool:
        """Drop the lease if ``owner`` still holds it.

        A failed release is logged and left to expire after ``ttl_seconds``.
        """
        try:
            async with await self._uow_factory() as uow:
                released = await uow.locks.delete_owned(self.name, owner)
        except STORE_ERRORS as e:
            logger.error(
                "lock.release_failed", lock=self.name, error=str(e), error_type=type(e).__name__
            )
            return False

        if released:
            logger.debug("lock.released", lock=self.name, owner=owner)
        else:
            logger.warning("lock.release_not_held", lock=self.name, owner=owner)
        return released
