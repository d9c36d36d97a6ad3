import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel

from sched_core.core.config import Settings


class CalendarEvent(BaseModel):
    id: str
    status: str = "confirmed"  # confirmed | cancelled
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    subject: Optional[str] = None


class CalendarClient(ABC):
    """
    Calendar provider seam. Implementations raise TransientError or
    PermanentError from sched_core.core.errors on failure.
    """

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        """Return the event, or None when it no longer exists"""

    @abstractmethod
    async def create_event(self, *, subject: str, start: datetime, end: datetime, attendees: list) -> CalendarEvent:
        pass

    @abstractmethod
    async def cancel_event(self, event_id: str) -> None:
        pass


class InMemoryCalendarClient(CalendarClient):
    """Mock calendar used in mock mode and tests"""

    def __init__(self):
        self.events: Dict[str, CalendarEvent] = {}
        self.calls = []

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        self.calls.append(("get_event", event_id))
        return self.events.get(event_id)

    async def create_event(self, *, subject: str, start: datetime, end: datetime, attendees: list) -> CalendarEvent:
        self.calls.append(("create_event", subject))
        event = CalendarEvent(id=f"evt-{uuid.uuid4().hex[:12]}", subject=subject, start=start, end=end)
        self.events[event.id] = event
        return event

    async def cancel_event(self, event_id: str) -> None:
        self.calls.append(("cancel_event", event_id))
        event = self.events.get(event_id)
        if event:
            event.status = "cancelled"


def build_calendar_client(settings: Settings) -> CalendarClient:
    if settings.CALENDAR_MODE == "mock":
        return InMemoryCalendarClient()
    raise ValueError(f"Unsupported CALENDAR_MODE: '{settings.CALENDAR_MODE}'")
