from datetime import datetime
from typing import Optional, Dict, Any, Tuple

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from sched_core.constants.queue_status import WebhookStatus
from sched_core.models.webhook_event import WebhookEvent
from sched_core.repositories.base_repository import ClaimableRepository, dialect_insert


class WebhookRepository(ClaimableRepository[WebhookEvent]):
    ready_status = WebhookStatus.received.value
    claimed_status = WebhookStatus.processing.value

    def __init__(self):
        super().__init__(WebhookEvent)

    def _ready_clause(self, now: datetime):
        # Unverified events stay in received forever and are never claimed
        return and_(super()._ready_clause(now), WebhookEvent.verified.is_(True))

    def _stale_clause(self, stale_before: datetime):
        return and_(super()._stale_clause(stale_before), WebhookEvent.verified.is_(True))

    async def get_by_dedup_key(self, db: AsyncSession, dedup_key: str) -> Optional[WebhookEvent]:
        return await self.get_one_by_condition(db, {"dedup_key": dedup_key})

    async def insert_verified(self, db: AsyncSession, *, event_data: Dict[str, Any]) -> Tuple[WebhookEvent, bool]:
        """
        Persist a verified event unless its dedup key is already stored.

        Returns:
            (event, created)
        """
        try:
            stmt = dialect_insert(db, WebhookEvent).values(**event_data).on_conflict_do_nothing(
                index_elements=["dedup_key"]
            )
            result = await db.execute(stmt)
            created = result.rowcount == 1
            event = await self.get_by_dedup_key(db, event_data["dedup_key"])
            return event, created
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def count_pending(self, db: AsyncSession) -> int:
        return await self.count(db, {"status": WebhookStatus.received.value, "verified": True})
