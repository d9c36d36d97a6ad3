from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from sched_core.constants.queue_status import NotificationStatus
from sched_core.models.notification_job import NotificationJob, NotificationAttempt
from sched_core.repositories.base_repository import (
    AsyncBaseRepository,
    ClaimableRepository,
    dialect_insert,
)


class NotificationRepository(ClaimableRepository[NotificationJob]):
    ready_status = NotificationStatus.pending.value
    claimed_status = NotificationStatus.sending.value

    def __init__(self):
        super().__init__(NotificationJob)

    async def get_by_idempotency_key(self, db: AsyncSession, key: str) -> Optional[NotificationJob]:
        return await self.get_one_by_condition(db, {"idempotency_key": key})

    async def enqueue(self, db: AsyncSession, *, job_data: Dict[str, Any]) -> Tuple[NotificationJob, bool]:
        """
        Insert a job unless its idempotency key already exists.

        Returns:
            (job, created) where job is the existing row on a duplicate key
        """
        try:
            stmt = dialect_insert(db, NotificationJob).values(**job_data).on_conflict_do_nothing(
                index_elements=["idempotency_key"]
            )
            result = await db.execute(stmt)
            created = result.rowcount == 1
            job = await self.get_by_idempotency_key(db, job_data["idempotency_key"])
            return job, created
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def cancel_pending_for_entity(
            self,
            db: AsyncSession,
            *,
            entity_type: str,
            entity_id: str,
            types: List[str],
    ) -> int:
        return await self.bulk_update(
            db,
            condition={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "type": types,
                "status": NotificationStatus.pending.value,
            },
            values={"status": NotificationStatus.canceled.value},
        )

    async def requeue_failed(
            self,
            db: AsyncSession,
            *,
            job_id: str,
            now: datetime,
            reset_attempts: bool = False,
    ) -> bool:
        values = {
            "status": NotificationStatus.pending.value,
            "run_after": now,
            "claimed_at": None,
            "claimed_by": None,
        }
        if reset_attempts:
            values["attempts"] = 0

        return await self.compare_and_set(
            db,
            id=job_id,
            expected={"status": NotificationStatus.failed.value},
            values=values,
        )

    async def get_by_entity(self, db: AsyncSession, entity_type: str, entity_id: str) -> List[NotificationJob]:
        return await self.get_by_condition(
            db,
            {"entity_type": entity_type, "entity_id": entity_id},
            order_by=NotificationJob.created_at.asc(),
        )

    async def count_pending(self, db: AsyncSession) -> int:
        return await self.count(db, {"status": NotificationStatus.pending.value})


class NotificationAttemptRepository(AsyncBaseRepository[NotificationAttempt]):
    def __init__(self):
        super().__init__(NotificationAttempt)

    async def record(
            self,
            db: AsyncSession,
            *,
            job_id: str,
            attempt_number: int,
            status: str,
            error: Optional[str] = None,
            retryable: Optional[bool] = None,
            provider_message_id: Optional[str] = None,
    ) -> NotificationAttempt:
        return await self.create(db, obj_in={
            "notification_job_id": job_id,
            "attempt_number": attempt_number,
            "status": status,
            "error": error,
            "retryable": retryable,
            "provider_message_id": provider_message_id,
        })

    async def get_for_job(self, db: AsyncSession, job_id: str) -> List[NotificationAttempt]:
        return await self.get_by_condition(
            db,
            {"notification_job_id": job_id},
            order_by=NotificationAttempt.attempt_number.asc(),
        )
