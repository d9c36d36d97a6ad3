from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from sched_core.schemas import notification_payloads as p


class RenderedEmail(BaseModel):
    subject: str
    text: str
    html: Optional[str] = None


class NotificationRenderer(ABC):
    """Black-box template renderer invoked by the notification worker"""

    @abstractmethod
    def render(self, payload: p.NotificationPayload) -> RenderedEmail:
        pass


def _self_schedule(x: p.CandidateSelfScheduleLink) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Schedule your {x.req_title} interview",
        text=f"Hi {x.candidate_name},\n\nPick a time for your interview: {x.public_link}\n"
             f"This link expires {x.expires_at.isoformat()}.",
    )


def _availability(x: p.CandidateAvailabilityRequest) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Share your availability for {x.req_title}",
        text=f"Hi {x.candidate_name},\n\nLet us know when you are free: {x.public_link}",
    )


def _booking(x: p.BookingConfirmation) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Interview confirmed: {x.req_title}",
        text=f"Hi {x.candidate_name},\n\nYour interview is confirmed for {x.scheduled_start_local}."
             + (f"\nJoin: {x.conference_join_url}" if x.conference_join_url else ""),
    )


def _reschedule(x: p.RescheduleConfirmation) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Interview rescheduled: {x.req_title}",
        text=f"Hi {x.candidate_name},\n\nYour interview moved to {x.new_start_local}.",
    )


def _cancel(x: p.CancelNotice) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Interview cancelled: {x.req_title}",
        text=f"Hi {x.candidate_name},\n\nYour interview was cancelled. Reason: {x.reason}",
    )


def _reminder(x) -> RenderedEmail:
    return RenderedEmail(
        subject=f"Reminder: {x.req_title} interview in {x.hours_until} hours",
        text=f"Hi {x.candidate_name},\n\nYour interview starts {x.scheduled_start_local}."
             + (f"\nJoin: {x.conference_join_url}" if x.conference_join_url else ""),
    )


def _coordinator_booking(x: p.CoordinatorBooking) -> RenderedEmail:
    return RenderedEmail(
        subject=f"{x.candidate_name} booked a {x.req_title} interview",
        text=f"Hi {x.coordinator_name},\n\n{x.candidate_name} booked {x.scheduled_start_local}.",
    )


def _coordinator_cancel(x: p.CoordinatorCancel) -> RenderedEmail:
    return RenderedEmail(
        subject=f"{x.candidate_name} cancelled a {x.req_title} interview",
        text=f"Hi {x.coordinator_name},\n\nThe interview on {x.scheduled_start_local} was cancelled."
             + (f"\nReason: {x.reason}" if x.reason else ""),
    )


def _escalation(x) -> RenderedEmail:
    state = "expired" if x.kind == "escalation_expired" else "no response"
    return RenderedEmail(
        subject=f"Action needed ({state}): {x.candidate_name} for {x.req_title}",
        text=f"Hi {x.coordinator_name},\n\n{x.candidate_name} has not responded after "
             f"{x.days_since_request} days.\nReview: {x.public_link}",
    )


class PlainTextRenderer(NotificationRenderer):
    """Minimal renderer; production deployments plug in their own templates"""

    TEMPLATES: Dict[str, Callable] = {
        "candidate_availability_request": _availability,
        "candidate_self_schedule_link": _self_schedule,
        "booking_confirmation": _booking,
        "reschedule_confirmation": _reschedule,
        "cancel_notice": _cancel,
        "reminder_24h": _reminder,
        "reminder_2h": _reminder,
        "coordinator_booking": _coordinator_booking,
        "coordinator_cancel": _coordinator_cancel,
        "escalation_no_response": _escalation,
        "escalation_expired": _escalation,
    }

    def render(self, payload: p.NotificationPayload) -> RenderedEmail:
        template = self.TEMPLATES.get(payload.kind)
        if template is None:
            raise ValueError(f"No template for notification kind: '{payload.kind}'")
        return template(payload)
