"""
Calendar event handler
"""
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import WebhookEventType
from sched_core.core.errors import PermanentError
from sched_core.core.logger import info, debug
from sched_core.models.webhook_event import WebhookEvent
from sched_core.workers.webhook_handlers.base_handler import BaseWebhookHandler


class CalendarCancelledHandler(BaseWebhookHandler):
    """
    Records that the provider cancelled a booking's calendar event.
    Reconciliation decides what to do about it.
    """

    @property
    def event_types(self) -> List[str]:
        return [WebhookEventType.calendar_event_cancelled.value]

    async def execute(self, db: AsyncSession, event: WebhookEvent) -> Dict[str, Any]:
        data = self.data(event)
        calendar_event_id = data.get("calendarEventId") or data.get("eventId")
        if not calendar_event_id:
            raise PermanentError("calendarEventId missing from calendar event", code="MISSING_FIELD")

        booking = await self.booking_repo.get_by_calendar_event_id(db, str(calendar_event_id))
        if booking is None:
            debug(self.logger, "Calendar event matched no booking", context={
                "calendar_event_id": calendar_event_id,
            })
            return {"calendar_event_id": calendar_event_id, "booking_id": None}

        booking.calendar_event_status = "cancelled"
        await db.flush()

        result = {"calendar_event_id": calendar_event_id, "booking_id": booking.id}
        info(self.logger, "Calendar cancellation recorded", context=result)
        return result

    async def related_request_ids(self, db: AsyncSession, event: WebhookEvent) -> List[str]:
        calendar_event_id = self.data(event).get("calendarEventId") or self.data(event).get("eventId")
        if not calendar_event_id:
            return []
        booking = await self.booking_repo.get_by_calendar_event_id(db, str(calendar_event_id))
        return [booking.request_id] if booking else []
