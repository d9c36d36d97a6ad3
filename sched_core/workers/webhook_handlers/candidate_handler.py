"""
Candidate update handler
"""
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import WebhookEventType
from sched_core.core.errors import PermanentError
from sched_core.core.logger import info
from sched_core.models.webhook_event import WebhookEvent
from sched_core.workers.webhook_handlers.base_handler import BaseWebhookHandler


class CandidateHandler(BaseWebhookHandler):
    """Refreshes candidate name/email on the candidate's scheduling requests"""

    @property
    def event_types(self) -> List[str]:
        return [WebhookEventType.candidate_updated.value]

    async def execute(self, db: AsyncSession, event: WebhookEvent) -> Dict[str, Any]:
        """
        Expected data:
        {
            "applicationId": "APP-1",          # or "previousEmail"
            "email": "new@example.com",
            "name": "New Name"
        }
        """
        data = self.data(event)
        application_id = data.get("applicationId")
        previous_email = data.get("previousEmail")

        if application_id:
            requests = await self.request_repo.get_by_application_id(db, str(application_id))
        elif previous_email:
            requests = await self.request_repo.get_by_candidate_email(db, str(previous_email))
        else:
            raise PermanentError("candidate event has neither applicationId nor previousEmail", code="MISSING_FIELD")

        name = data.get("name")
        email = data.get("email")
        updated = 0
        for request in requests:
            changed = False
            if name and request.candidate_name != name:
                request.candidate_name = name
                changed = True
            if email and request.candidate_email != email:
                request.candidate_email = email
                changed = True
            updated += int(changed)

        await db.flush()

        result = {"matched_requests": len(requests), "updated": updated}
        info(self.logger, "Candidate event applied", context=result)
        return result
