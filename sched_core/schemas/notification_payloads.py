"""
Tagged payload variants, one per notification type.

Each job row stores `payload` as JSON with a `kind` tag; the worker parses it
back through NotificationPayload and dispatches on the tag.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CandidateContext(_PayloadBase):
    candidate_name: str
    candidate_email: str
    candidate_timezone: str = "UTC"
    req_title: str
    interview_type: str
    duration_minutes: int


class CoordinatorContext(_PayloadBase):
    coordinator_email: str
    coordinator_name: str
    candidate_name: str
    candidate_email: str
    req_title: str
    interview_type: str


class CandidateAvailabilityRequest(CandidateContext):
    kind: Literal["candidate_availability_request"] = "candidate_availability_request"
    public_link: str
    expires_at: datetime
    window_start: datetime
    window_end: datetime


class CandidateSelfScheduleLink(CandidateContext):
    kind: Literal["candidate_self_schedule_link"] = "candidate_self_schedule_link"
    public_link: str
    expires_at: datetime


class BookingConfirmation(CandidateContext):
    kind: Literal["booking_confirmation"] = "booking_confirmation"
    scheduled_start_utc: datetime
    scheduled_end_utc: datetime
    scheduled_start_local: str
    scheduled_end_local: str
    conference_join_url: Optional[str] = None
    calendar_event_id: Optional[str] = None
    interviewer_emails: List[str] = Field(default_factory=list)


class RescheduleConfirmation(CandidateContext):
    kind: Literal["reschedule_confirmation"] = "reschedule_confirmation"
    old_start_utc: datetime
    old_end_utc: datetime
    new_start_utc: datetime
    new_end_utc: datetime
    new_start_local: str
    new_end_local: str
    conference_join_url: Optional[str] = None
    reason: Optional[str] = None


class CancelNotice(CandidateContext):
    kind: Literal["cancel_notice"] = "cancel_notice"
    reason: str
    cancelled_by: str


class _Reminder(CandidateContext):
    scheduled_start_utc: datetime
    scheduled_end_utc: datetime
    scheduled_start_local: str
    scheduled_end_local: str
    conference_join_url: Optional[str] = None
    hours_until: int


class Reminder24h(_Reminder):
    kind: Literal["reminder_24h"] = "reminder_24h"


class Reminder2h(_Reminder):
    kind: Literal["reminder_2h"] = "reminder_2h"


class CoordinatorBooking(CoordinatorContext):
    kind: Literal["coordinator_booking"] = "coordinator_booking"
    scheduled_start_utc: datetime
    scheduled_end_utc: datetime
    scheduled_start_local: str
    conference_join_url: Optional[str] = None


class CoordinatorCancel(CoordinatorContext):
    kind: Literal["coordinator_cancel"] = "coordinator_cancel"
    scheduled_start_utc: datetime
    scheduled_end_utc: datetime
    scheduled_start_local: str
    reason: Optional[str] = None


class _Escalation(CoordinatorContext):
    request_id: str
    request_type: Literal["availability", "booking"]
    days_since_request: int
    public_link: str


class EscalationNoResponse(_Escalation):
    kind: Literal["escalation_no_response"] = "escalation_no_response"


class EscalationExpired(_Escalation):
    kind: Literal["escalation_expired"] = "escalation_expired"


NotificationPayload = Annotated[
    Union[
        CandidateAvailabilityRequest,
        CandidateSelfScheduleLink,
        BookingConfirmation,
        RescheduleConfirmation,
        CancelNotice,
        Reminder24h,
        Reminder2h,
        CoordinatorBooking,
        CoordinatorCancel,
        EscalationNoResponse,
        EscalationExpired,
    ],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(NotificationPayload)


def parse_payload(data: dict) -> NotificationPayload:
    """Validate a stored payload dict back into its variant (raises ValidationError)"""
    return _payload_adapter.validate_python(data)


def dump_payload(payload: BaseModel) -> dict:
    return payload.model_dump(mode="json")
