"""
Job Run Recorder
Append-only history of worker executions
"""
from datetime import timedelta
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.queue_status import JobRunStatus
from sched_core.core.clock import Clock, utc_now
from sched_core.core.config import Settings
from sched_core.core.logger import debug, warning
from sched_core.core.setup_logger import worker_logger
from sched_core.models.job_run import JobRun
from sched_core.repositories.job_run_repository import JobRunRepository


class JobRunService:
    def __init__(self, settings: Settings, repo: JobRunRepository = None, clock: Clock = utc_now):
        self.settings = settings
        self.repo = repo or JobRunRepository()
        self.clock = clock

    async def start(
            self,
            db: AsyncSession,
            *,
            job_name: str,
            triggered_by: str,
            queue_depth_before: Optional[int],
            instance_id: str,
    ) -> JobRun:
        run = await self.repo.create(db, obj_in={
            "job_name": job_name,
            "started_at": self.clock(),
            "status": JobRunStatus.running.value,
            "triggered_by": triggered_by,
            "queue_depth_before": queue_depth_before,
            "instance_id": instance_id,
        })
        await db.commit()
        return run

    async def finish(
            self,
            db: AsyncSession,
            run: JobRun,
            *,
            status: str,
            processed: int = 0,
            failed: int = 0,
            skipped: int = 0,
            queue_depth_after: Optional[int] = None,
            error_summary: Optional[str] = None,
            error_details: Optional[Any] = None,
    ) -> bool:
        """
        Finalize a run. Returns False if the run was already final
        (e.g. expired as crashed by another instance).
        """
        finished_at = self.clock()
        duration_ms = int((finished_at - run.started_at).total_seconds() * 1000)

        finalized = await self.repo.finalize(db, run_id=run.id, values={
            "status": status,
            "finished_at": finished_at,
            "duration_ms": max(duration_ms, 0),
            "processed": processed,
            "failed": failed,
            "skipped": skipped,
            "queue_depth_after": queue_depth_after,
            "error_summary": error_summary,
            "error_details": error_details,
        })
        await db.commit()

        if not finalized:
            warning(worker_logger, "Job run already finalized, outcome not recorded", context={
                "run_id": run.id,
                "job_name": run.job_name,
                "status": status,
            })
        return finalized

    async def record_locked(
            self,
            db: AsyncSession,
            *,
            job_name: str,
            triggered_by: str,
            instance_id: str,
            queue_depth: Optional[int],
    ) -> JobRun:
        now = self.clock()
        run = await self.repo.create(db, obj_in={
            "job_name": job_name,
            "started_at": now,
            "finished_at": now,
            "duration_ms": 0,
            "status": JobRunStatus.locked.value,
            "triggered_by": triggered_by,
            "instance_id": instance_id,
            "queue_depth_before": queue_depth,
            "queue_depth_after": queue_depth,
            "error_summary": "Lock held by another instance",
        })
        await db.commit()
        return run

    async def expire_stale_runs(self, db: AsyncSession, job_name: str) -> int:
        """
        Finalize runs left in running past JOB_RUN_STALE_SECONDS (crashed workers).
        """
        now = self.clock()
        stale_seconds = self.settings.JOB_RUN_STALE_SECONDS
        cutoff = now - timedelta(seconds=stale_seconds)

        expired = 0
        for run in await self.repo.get_stale_running(db, job_name, cutoff):
            won = await self.repo.finalize(db, run_id=run.id, values={
                "status": JobRunStatus.failed.value,
                "finished_at": now,
                "duration_ms": int((now - run.started_at).total_seconds() * 1000),
                "error_summary": f"Run did not finish within {stale_seconds}s (crash timeout)",
            })
            if won:
                expired += 1
        await db.commit()

        if expired:
            warning(worker_logger, "Expired stale job runs", context={
                "job_name": job_name,
                "expired": expired,
            })
        return expired

    async def get_latest(self, db: AsyncSession, job_name: str) -> Optional[JobRun]:
        return await self.repo.get_latest(db, job_name)

    async def get_recent(self, db: AsyncSession, limit: int = 50) -> List[JobRun]:
        return await self.repo.get_recent(db, limit=limit)

    async def get_by_job_name(self, db: AsyncSession, job_name: str, limit: int = 50) -> List[JobRun]:
        return await self.repo.get_recent(db, limit=limit, job_name=job_name)

    async def failure_rate_24h(self, db: AsyncSession, job_name: str) -> float:
        counts = await self.repo.count_finalized_since(db, job_name, self.clock() - timedelta(hours=24))
        total = sum(counts.values())
        if total == 0:
            return 0.0
        rate = counts.get(JobRunStatus.failed.value, 0) / total
        debug(worker_logger, "Computed 24h failure rate", context={
            "job_name": job_name,
            "rate": round(rate, 4),
            "runs": total,
        })
        return rate
