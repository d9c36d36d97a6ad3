"""
Reconciliation Worker
Runs drift detection, then repairs a bounded batch of due reconciliation jobs
"""

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import JobName
from sched_core.core.errors import describe_error
from sched_core.core.logger import info, debug, error
from sched_core.core.setup_logger import worker_logger
from sched_core.repositories.reconciliation_repository import ReconciliationRepository
from sched_core.schemas.job_run_schemas import BatchResult
from sched_core.services.reconciliation_service import ReconciliationService
from sched_core.workers.base_worker import BaseBatchWorker


class ReconcileWorker(BaseBatchWorker):
    job_name = JobName.reconcile.value

    def __init__(
            self,
            settings,
            service: ReconciliationService = None,
            repo: ReconciliationRepository = None,
            skip_detection: bool = False,
            **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.repo = repo or ReconciliationRepository()
        self.service = service or ReconciliationService(settings, repo=self.repo, clock=self.clock, rng=self.rng)
        self.skip_detection = skip_detection

    async def queue_depth(self, db: AsyncSession) -> int:
        return await self.repo.count_pending(db)

    async def process_batch(self) -> BatchResult:
        result = BatchResult()
        factory = await self.session_factory()

        async with factory() as db:
            if not self.skip_detection:
                await self.service.run_detection(db)

            claimed = await self.claim_due(db, result)
            if not claimed:
                debug(worker_logger, "No reconciliation jobs due")
                return result

            info(worker_logger, "Reconciliation jobs claimed", context={
                "count": len(claimed),
                "instance_id": self.instance_id,
            })

            for job_id, claimed_at, stale in claimed:
                try:
                    if stale:
                        outcome = await self.service.expire_claim(db, job_id, claimed_at)
                    else:
                        outcome = await self.service.process_job(db, job_id, claimed_at)
                    err = None
                except Exception as e:
                    await db.rollback()
                    error(worker_logger, "Unexpected error processing reconciliation job", context={
                        "job_id": job_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    })
                    outcome, err = "failed", describe_error(e)

                # A job handed to a human has been dealt with as far as the run goes
                if outcome in ("completed", "requires_attention"):
                    result.processed += 1
                elif outcome == "skipped":
                    result.skipped += 1
                else:
                    result.failed += 1
                    result.errors.append({"id": job_id, "error": err or outcome})

        return result
