"""
Requisition update handler
"""
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import WebhookEventType, RequestStatus
from sched_core.core.errors import PermanentError
from sched_core.core.logger import info
from sched_core.models.webhook_event import WebhookEvent
from sched_core.workers.webhook_handlers.base_handler import BaseWebhookHandler


class RequisitionHandler(BaseWebhookHandler):
    """Keeps the job title on still-pending requests in sync"""

    @property
    def event_types(self) -> List[str]:
        return [WebhookEventType.requisition_updated.value]

    async def execute(self, db: AsyncSession, event: WebhookEvent) -> Dict[str, Any]:
        data = self.data(event)
        req_id = data.get("reqId") or data.get("requisitionId")
        if not req_id:
            raise PermanentError("reqId missing from requisition event", code="MISSING_FIELD")

        title = data.get("title")
        requests = await self.request_repo.get_by_condition(db, {
            "req_id": str(req_id),
            "status": RequestStatus.pending.value,
        })

        updated = 0
        if title:
            for request in requests:
                if request.req_title != title:
                    request.req_title = title
                    updated += 1
            await db.flush()

        result = {"req_id": req_id, "matched_requests": len(requests), "updated": updated}
        info(self.logger, "Requisition event applied", context=result)
        return result

    async def related_request_ids(self, db: AsyncSession, event: WebhookEvent) -> List[str]:
        return []
