from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, delete, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.models.job_lock import JobLock
from sched_core.repositories.base_repository import AsyncBaseRepository, dialect_insert


class LockRepository(AsyncBaseRepository[JobLock]):
    def __init__(self):
        super().__init__(JobLock)

    async def try_acquire(
            self,
            db: AsyncSession,
            *,
            resource_name: str,
            holder_id: str,
            now: datetime,
            expires_at: datetime,
    ) -> bool:
        """
        Insert-if-absent, else take over a lock that has expired or is already ours.
        Both statements are conditional writes; rowcount decides the grant.
        """
        try:
            stmt = dialect_insert(db, JobLock).values(
                resource_name=resource_name,
                holder_id=holder_id,
                acquired_at=now,
                expires_at=expires_at,
            ).on_conflict_do_nothing(index_elements=["resource_name"])
            result = await db.execute(stmt)
            if result.rowcount == 1:
                return True

            stmt = (
                update(JobLock)
                .where(
                    and_(
                        JobLock.resource_name == resource_name,
                        or_(JobLock.expires_at <= now, JobLock.holder_id == holder_id),
                    )
                )
                .values(holder_id=holder_id, acquired_at=now, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount == 1
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def extend(
            self,
            db: AsyncSession,
            *,
            resource_name: str,
            holder_id: str,
            now: datetime,
            expires_at: datetime,
    ) -> bool:
        try:
            stmt = (
                update(JobLock)
                .where(
                    and_(
                        JobLock.resource_name == resource_name,
                        JobLock.holder_id == holder_id,
                        JobLock.expires_at > now,
                    )
                )
                .values(expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount == 1
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def delete_owned(self, db: AsyncSession, *, resource_name: str, holder_id: str) -> int:
        try:
            stmt = delete(JobLock).where(
                and_(JobLock.resource_name == resource_name, JobLock.holder_id == holder_id)
            ).execution_options(synchronize_session=False)
            result = await db.execute(stmt)
            return result.rowcount
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get_by_resource(self, db: AsyncSession, resource_name: str) -> Optional[JobLock]:
        stmt = select(JobLock).where(JobLock.resource_name == resource_name).execution_options(
            populate_existing=True
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
