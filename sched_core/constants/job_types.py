from enum import Enum


class JobName(Enum):
    notify = "notify"
    webhook = "webhook"
    reconcile = "reconcile"
    escalate = "escalate"


class JobTrigger(Enum):
    scheduler = "scheduler"
    manual = "manual"
    cli = "cli"


class NotificationType(Enum):
    candidate_availability_request = "candidate_availability_request"
    candidate_self_schedule_link = "candidate_self_schedule_link"
    booking_confirmation = "booking_confirmation"
    reschedule_confirmation = "reschedule_confirmation"
    cancel_notice = "cancel_notice"
    reminder_24h = "reminder_24h"
    reminder_2h = "reminder_2h"
    coordinator_booking = "coordinator_booking"
    coordinator_cancel = "coordinator_cancel"
    escalation_no_response = "escalation_no_response"
    escalation_expired = "escalation_expired"


REMINDER_TYPES = [
    NotificationType.reminder_24h.value,
    NotificationType.reminder_2h.value,
]


class EntityType(Enum):
    scheduling_request = "scheduling_request"
    booking = "booking"
    availability_request = "availability_request"


class ReconciliationJobType(Enum):
    icims_note_missing = "icims_note_missing"
    calendar_event_missing = "calendar_event_missing"
    state_mismatch = "state_mismatch"


class WebhookEventType(Enum):
    application_updated = "application_updated"
    application_status_changed = "application.status_changed"
    candidate_updated = "candidate.updated"
    requisition_updated = "requisition.updated"
    calendar_event_cancelled = "calendar.event_cancelled"


class AuditAction(Enum):
    webhook_received = "webhook_received"
    webhook_deduped = "webhook_deduped"
    webhook_processed = "webhook_processed"
    webhook_failed = "webhook_failed"
    reconciliation_detected = "reconciliation_detected"
    reconciliation_repaired = "reconciliation_repaired"
    reconciliation_failed = "reconciliation_failed"
    needs_attention_set = "needs_attention_set"


class RequestStatus(Enum):
    pending = "pending"
    booked = "booked"
    rescheduled = "rescheduled"
    cancelled = "cancelled"
    expired = "expired"


class BookingStatus(Enum):
    confirmed = "confirmed"
    rescheduled = "rescheduled"
    cancelled = "cancelled"
