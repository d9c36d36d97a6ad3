from typing import List, Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.models.audit_log import AuditLog
from sched_core.repositories.base_repository import AsyncBaseRepository


class AuditRepository(AsyncBaseRepository[AuditLog]):
    def __init__(self):
        super().__init__(AuditLog)

    async def log(
            self,
            db: AsyncSession,
            *,
            action: str,
            payload: Optional[Dict[str, Any]] = None,
            request_id: Optional[str] = None,
            booking_id: Optional[str] = None,
            actor_type: str = "system",
            actor_id: Optional[str] = None,
    ) -> AuditLog:
        return await self.create(db, obj_in={
            "action": action,
            "payload": payload or {},
            "request_id": request_id,
            "booking_id": booking_id,
            "actor_type": actor_type,
            "actor_id": actor_id,
        })

    async def get_by_action(self, db: AsyncSession, action: str) -> List[AuditLog]:
        return await self.get_by_condition(db, {"action": action}, order_by=AuditLog.created_at.asc())
