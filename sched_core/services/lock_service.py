"""
Lock Manager
TTL-bounded leases over a named resource so only one instance runs a job at a time
"""
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.core.clock import Clock, utc_now
from sched_core.core.config import Settings
from sched_core.core.logger import debug, info, warning
from sched_core.core.setup_logger import worker_logger
from sched_core.models.job_lock import JobLock
from sched_core.repositories.lock_repository import LockRepository


class LockService:
    def __init__(self, settings: Settings, repo: LockRepository = None, clock: Clock = utc_now):
        self.settings = settings
        self.repo = repo or LockRepository()
        self.clock = clock

    def _ttl(self, resource_name: str, ttl_seconds: Optional[int]) -> int:
        if ttl_seconds is not None:
            return ttl_seconds
        return self.settings.lock_ttl_for(resource_name)

    async def acquire(
            self,
            db: AsyncSession,
            resource_name: str,
            holder_id: str,
            ttl_seconds: Optional[int] = None,
    ) -> bool:
        """
        Grant the lock if nobody holds it, the holder's lease expired, or the
        caller already holds it. Denial is the normal outcome under contention.
        """
        now = self.clock()
        expires_at = now + timedelta(seconds=self._ttl(resource_name, ttl_seconds))

        granted = await self.repo.try_acquire(
            db,
            resource_name=resource_name,
            holder_id=holder_id,
            now=now,
            expires_at=expires_at,
        )
        await db.commit()

        if granted:
            debug(worker_logger, "Lock acquired", context={
                "resource": resource_name,
                "holder_id": holder_id,
                "expires_at": expires_at.isoformat(),
            })
        else:
            info(worker_logger, "Lock denied, held by another instance", context={
                "resource": resource_name,
                "holder_id": holder_id,
            })
        return granted

    async def renew(
            self,
            db: AsyncSession,
            resource_name: str,
            holder_id: str,
            ttl_seconds: Optional[int] = None,
    ) -> bool:
        now = self.clock()
        expires_at = now + timedelta(seconds=self._ttl(resource_name, ttl_seconds))
        renewed = await self.repo.extend(
            db,
            resource_name=resource_name,
            holder_id=holder_id,
            now=now,
            expires_at=expires_at,
        )
        await db.commit()
        return renewed

    async def release(self, db: AsyncSession, resource_name: str, holder_id: str) -> bool:
        """
        Delete the caller's lock.

        Returns:
            True when released or already absent, False when someone else holds it
        """
        deleted = await self.repo.delete_owned(db, resource_name=resource_name, holder_id=holder_id)
        await db.commit()
        if deleted:
            return True

        current = await self.repo.get_by_resource(db, resource_name)
        if current is None:
            return True

        warning(worker_logger, "Refusing to release lock owned by another instance", context={
            "resource": resource_name,
            "holder_id": holder_id,
            "owner": current.holder_id,
        })
        return False

    async def get_holder(self, db: AsyncSession, resource_name: str) -> Optional[JobLock]:
        """Current unexpired lock row, or None"""
        lock = await self.repo.get_by_resource(db, resource_name)
        if lock is None or lock.expires_at <= self.clock():
            return None
        return lock

    async def is_held(self, db: AsyncSession, resource_name: str) -> bool:
        return await self.get_holder(db, resource_name) is not None
