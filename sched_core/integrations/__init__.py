from sched_core.integrations.email_transport import (
    EmailTransport,
    ConsoleTransport,
    HttpMailTransport,
    OutboundEmail,
    build_email_transport,
)
from sched_core.integrations.renderer import NotificationRenderer, PlainTextRenderer, RenderedEmail
from sched_core.integrations.calendar import CalendarClient, CalendarEvent, InMemoryCalendarClient, build_calendar_client
from sched_core.integrations.ats import AtsClient, InMemoryAtsClient, build_ats_client

__all__ = [
    "EmailTransport",
    "ConsoleTransport",
    "HttpMailTransport",
    "OutboundEmail",
    "build_email_transport",
    "NotificationRenderer",
    "PlainTextRenderer",
    "RenderedEmail",
    "CalendarClient",
    "CalendarEvent",
    "InMemoryCalendarClient",
    "build_calendar_client",
    "AtsClient",
    "InMemoryAtsClient",
    "build_ats_client",
]
