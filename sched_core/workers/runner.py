"""
Job Runner
Wraps one batch of a worker in the distributed lock and the job-run record
"""
import asyncio
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from sched_core.constants.job_types import JobName, JobTrigger
from sched_core.constants.queue_status import JobRunStatus
from sched_core.core.clock import Clock, utc_now
from sched_core.core.config import Settings
from sched_core.core.errors import describe_error
from sched_core.core.logger import info, warning, error
from sched_core.core.setup_logger import worker_logger
from sched_core.db import database
from sched_core.schemas.job_run_schemas import BatchResult, JobRunSummary
from sched_core.services.job_run_service import JobRunService
from sched_core.services.lock_service import LockService
from sched_core.workers.base_worker import BaseBatchWorker, default_instance_id
from sched_core.workers.escalate_worker import EscalationWorker
from sched_core.workers.notify_worker import NotifyWorker
from sched_core.workers.reconcile_worker import ReconcileWorker
from sched_core.workers.webhook_worker import WebhookWorker

WORKERS: Dict[str, Callable[..., BaseBatchWorker]] = {
    JobName.notify.value: NotifyWorker,
    JobName.webhook.value: WebhookWorker,
    JobName.reconcile.value: ReconcileWorker,
    JobName.escalate.value: EscalationWorker,
}

MAX_ERROR_DETAILS = 10


def build_worker(job_name: str, settings: Settings, **kwargs) -> BaseBatchWorker:
    try:
        factory = WORKERS[job_name]
    except KeyError:
        raise ValueError(f"Unknown job: '{job_name}'. Available jobs: {list(WORKERS.keys())}")
    return factory(settings, **kwargs)


class JobRunner:
    """
    One run of a job: lock, record, process a batch, record, unlock.

    The lock resource is the job name, so at most one instance runs a given
    job at a time. A denied lock is recorded as a locked run and is not an error.
    """

    def __init__(
            self,
            settings: Settings,
            session_factory: Optional[async_sessionmaker] = None,
            clock: Clock = utc_now,
            instance_id: Optional[str] = None,
            workers: Optional[Dict[str, BaseBatchWorker]] = None,
            lock_service: LockService = None,
            job_run_service: JobRunService = None,
    ):
        self.settings = settings
        self._session_factory = session_factory
        self.clock = clock
        self.instance_id = instance_id or default_instance_id()
        self.workers = workers or {}
        self.lock_service = lock_service or LockService(settings, clock=clock)
        self.job_run_service = job_run_service or JobRunService(settings, clock=clock)

    async def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = await database.get_session_factory()
        return self._session_factory

    def get_worker(self, job_name: str) -> BaseBatchWorker:
        if job_name not in self.workers:
            self.workers[job_name] = build_worker(
                job_name,
                self.settings,
                session_factory=self._session_factory,
                clock=self.clock,
                instance_id=self.instance_id,
            )
        return self.workers[job_name]

    async def run(self, job_name: str, triggered_by: str = JobTrigger.manual.value) -> JobRunSummary:
        worker = self.get_worker(job_name)
        factory = await self.session_factory()

        async with factory() as db:
            await self.job_run_service.expire_stale_runs(db, job_name)
            depth_before = await worker.queue_depth(db)

            if not await self.lock_service.acquire(db, job_name, self.instance_id):
                run = await self.job_run_service.record_locked(
                    db,
                    job_name=job_name,
                    triggered_by=triggered_by,
                    instance_id=self.instance_id,
                    queue_depth=depth_before,
                )
                return JobRunSummary(
                    success=True,
                    job_name=job_name,
                    run_id=run.id,
                    status=JobRunStatus.locked.value,
                    instance_id=self.instance_id,
                    triggered_by=triggered_by,
                    queue_depth_before=depth_before,
                    queue_depth_after=depth_before,
                    duration_ms=0,
                    message="Lock held by another instance, skipped",
                )

            try:
                return await self._run_locked(db, worker, job_name, triggered_by, depth_before)
            finally:
                try:
                    await db.rollback()
                    await self.lock_service.release(db, job_name, self.instance_id)
                except Exception as e:
                    # The lease expires on its own
                    error(worker_logger, "Failed to release job lock", context={
                        "job_name": job_name,
                        "error": str(e),
                    })

    async def _run_locked(self, db, worker: BaseBatchWorker, job_name: str, triggered_by: str, depth_before: int) -> JobRunSummary:
        run = await self.job_run_service.start(
            db,
            job_name=job_name,
            triggered_by=triggered_by,
            queue_depth_before=depth_before,
            instance_id=self.instance_id,
        )
        info(worker_logger, "Job run started", context={
            "run_id": run.id,
            "job_name": job_name,
            "triggered_by": triggered_by,
            "queue_depth": depth_before,
        })

        deadline = self.settings.lock_ttl_for(job_name)
        result = BatchResult()
        crash: Optional[str] = None
        try:
            result = await asyncio.wait_for(worker.process_batch(), timeout=deadline)
        except asyncio.TimeoutError:
            crash = f"Run exceeded its {deadline}s deadline"
        except Exception as e:
            crash = describe_error(e)
            error(worker_logger, "Job run crashed", context={
                "run_id": run.id,
                "job_name": job_name,
                "error": crash,
            })

        if crash is not None:
            status = JobRunStatus.failed.value
            error_summary = crash
        else:
            status = JobRunStatus.failed.value if result.failed > 0 and result.processed == 0 else JobRunStatus.completed.value
            error_summary = f"{len(result.errors)} errors" if result.errors else None

        depth_after = await worker.queue_depth(db)
        await self.job_run_service.finish(
            db,
            run,
            status=status,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            queue_depth_after=depth_after,
            error_summary=error_summary,
            error_details=result.errors[:MAX_ERROR_DETAILS] or None,
        )

        summary = JobRunSummary(
            success=status == JobRunStatus.completed.value,
            job_name=job_name,
            run_id=run.id,
            status=status,
            instance_id=self.instance_id,
            triggered_by=triggered_by,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            queue_depth_before=depth_before,
            queue_depth_after=depth_after,
            duration_ms=int((self.clock() - run.started_at).total_seconds() * 1000),
            message=error_summary,
            errors=result.errors[:MAX_ERROR_DETAILS],
        )

        log = info if summary.success else warning
        log(worker_logger, "Job run finished", context={
            "run_id": run.id,
            "job_name": job_name,
            "status": status,
            "processed": result.processed,
            "failed": result.failed,
            "skipped": result.skipped,
            "queue_depth_after": depth_after,
        })
        return summary

    async def close(self) -> None:
        for worker in self.workers.values():
            await worker.close()
