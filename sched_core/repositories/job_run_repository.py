from datetime import datetime
from typing import List, Optional, Dict, Any

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.queue_status import JobRunStatus, FINAL_JOB_RUN_STATUSES
from sched_core.models.job_run import JobRun
from sched_core.repositories.base_repository import AsyncBaseRepository


class JobRunRepository(AsyncBaseRepository[JobRun]):
    def __init__(self):
        super().__init__(JobRun)

    async def finalize(self, db: AsyncSession, *, run_id: str, values: Dict[str, Any]) -> bool:
        """
        Finalize a running run. A run that is already final is left untouched.
        """
        return await self.compare_and_set(
            db,
            id=run_id,
            expected={"status": JobRunStatus.running.value},
            values=values,
        )

    async def get_latest(self, db: AsyncSession, job_name: str) -> Optional[JobRun]:
        stmt = (
            select(JobRun)
            .where(JobRun.job_name == job_name)
            .order_by(JobRun.started_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_recent(self, db: AsyncSession, limit: int = 50, job_name: Optional[str] = None) -> List[JobRun]:
        stmt = select(JobRun)
        if job_name:
            stmt = stmt.where(JobRun.job_name == job_name)
        stmt = stmt.order_by(JobRun.started_at.desc()).limit(limit).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_stale_running(self, db: AsyncSession, job_name: str, cutoff: datetime) -> List[JobRun]:
        stmt = select(JobRun).where(
            and_(
                JobRun.job_name == job_name,
                JobRun.status == JobRunStatus.running.value,
                JobRun.started_at <= cutoff,
            )
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def count_finalized_since(self, db: AsyncSession, job_name: str, since: datetime) -> Dict[str, int]:
        """
        Count finalized runs since a point in time, split by status.
        """
        stmt = (
            select(JobRun.status, func.count())
            .where(
                and_(
                    JobRun.job_name == job_name,
                    JobRun.started_at >= since,
                    JobRun.status.in_(FINAL_JOB_RUN_STATUSES),
                )
            )
            .group_by(JobRun.status)
        )
        result = await db.execute(stmt)
        return {row[0]: row[1] for row in result}
