"""
Application status handler
Records the ATS status on matching scheduling requests
"""
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import WebhookEventType, RequestStatus
from sched_core.core.errors import PermanentError
from sched_core.core.logger import info, debug
from sched_core.models.webhook_event import WebhookEvent
from sched_core.workers.webhook_handlers.base_handler import BaseWebhookHandler

# ATS statuses that make an open scheduling request moot
TERMINAL_ATS_STATUSES = {"withdrawn", "rejected", "hired"}

OPEN_REQUEST_STATUSES = {RequestStatus.pending.value, RequestStatus.booked.value, RequestStatus.rescheduled.value}


class ApplicationHandler(BaseWebhookHandler):
    """Handler for application status change events"""

    @property
    def event_types(self) -> List[str]:
        return [
            WebhookEventType.application_updated.value,
            WebhookEventType.application_status_changed.value,
        ]

    async def execute(self, db: AsyncSession, event: WebhookEvent) -> Dict[str, Any]:
        """
        Expected data:
        {
            "applicationId": "APP-1",
            "status": "withdrawn",
            "previousStatus": "interviewing"
        }
        """
        data = self.data(event)
        application_id = data.get("applicationId")
        if not application_id:
            raise PermanentError("applicationId missing from application event", code="MISSING_FIELD")

        new_status = data.get("status") or data.get("newStatus")
        requests = await self.request_repo.get_by_application_id(db, str(application_id))

        updated = 0
        flagged = 0
        for request in requests:
            if new_status and request.ats_status != new_status:
                request.ats_status = new_status
                updated += 1

            if (
                    new_status
                    and str(new_status).lower() in TERMINAL_ATS_STATUSES
                    and request.status in OPEN_REQUEST_STATUSES
                    and not request.needs_attention
            ):
                request.needs_attention = True
                request.needs_attention_reason = f"Candidate application is {new_status} in ATS"
                flagged += 1

        await db.flush()

        result = {
            "application_id": application_id,
            "status": new_status,
            "matched_requests": len(requests),
            "updated": updated,
            "flagged": flagged,
        }
        if requests:
            info(self.logger, "Application event applied", context=result)
        else:
            debug(self.logger, "Application event matched no scheduling requests", context=result)
        return result
