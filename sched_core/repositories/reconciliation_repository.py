from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.queue_status import ReconciliationStatus, OPEN_RECONCILIATION_STATUSES
from sched_core.models.reconciliation_job import ReconciliationJob
from sched_core.repositories.base_repository import ClaimableRepository


class ReconciliationRepository(ClaimableRepository[ReconciliationJob]):
    ready_status = ReconciliationStatus.pending.value
    claimed_status = ReconciliationStatus.processing.value

    def __init__(self):
        super().__init__(ReconciliationJob)

    async def find_open(
            self,
            db: AsyncSession,
            *,
            entity_type: str,
            entity_id: str,
            job_type: str,
    ) -> Optional[ReconciliationJob]:
        return await self.get_one_by_condition(db, {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "job_type": job_type,
            "status": OPEN_RECONCILIATION_STATUSES,
        })

    async def get_requiring_attention(self, db: AsyncSession, limit: int = 100) -> List[ReconciliationJob]:
        return await self.get_by_condition(
            db,
            {"status": [ReconciliationStatus.requires_attention.value, ReconciliationStatus.failed.value]},
            limit=limit,
            order_by=ReconciliationJob.updated_at.desc(),
        )

    async def count_pending(self, db: AsyncSession) -> int:
        return await self.count(db, {"status": ReconciliationStatus.pending.value})
