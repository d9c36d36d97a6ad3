"""
Notification Queue
Builds idempotency keys and payloads and enqueues outbound-message jobs.

Enqueue methods flush but do not commit, so they join the caller's
transaction (e.g. the one that wrote the booking).
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import NotificationType, EntityType, REMINDER_TYPES
from sched_core.constants.queue_status import NotificationStatus
from sched_core.core.clock import Clock, utc_now, hour_bucket, epoch_ms
from sched_core.core.config import Settings
from sched_core.core.logger import info, warning, debug
from sched_core.core.setup_logger import worker_logger
from sched_core.models.notification_job import NotificationJob
from sched_core.models.scheduling import SchedulingRequest, Booking
from sched_core.repositories.notification_repository import NotificationRepository
from sched_core.repositories.preference_repository import PreferenceRepository
from sched_core.schemas import notification_payloads as p
from sched_core.schemas.notification_schemas import AvailabilityRequestInfo, Coordinator

REMINDER_OFFSETS = {
    NotificationType.reminder_24h: 24,
    NotificationType.reminder_2h: 2,
}

DEFAULT_TIMEZONE = "America/New_York"


def build_idempotency_key(
        notification_type: str,
        entity_type: str,
        entity_id: str,
        discriminator: Optional[str] = None,
) -> str:
    """
    {type}:{entityType}:{entityId}[:{discriminator}]
    """
    key = f"{notification_type}:{entity_type}:{entity_id}"
    if discriminator:
        key = f"{key}:{discriminator}"
    return key


def reminder_discriminator(fire_at: datetime, reschedule_count: int = 0) -> str:
    """Fire time truncated to the UTC hour; rescheduled bookings get a revision suffix"""
    bucket = hour_bucket(fire_at)
    if reschedule_count:
        return f"{bucket}-rev{reschedule_count}"
    return bucket


def format_local(value: datetime, tz_name: Optional[str], with_date: bool = True) -> str:
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")

    local = value.astimezone(tz)
    hour = local.hour % 12 or 12
    clock = f"{hour}:{local:%M} {local:%p} {local.tzname()}"
    if not with_date:
        return clock
    return f"{local:%A}, {local:%B} {local.day}, {local.year} at {clock}"


class NotificationService:
    def __init__(
            self,
            settings: Settings,
            repo: NotificationRepository = None,
            preference_repo: PreferenceRepository = None,
            clock: Clock = utc_now,
    ):
        self.settings = settings
        self.repo = repo or NotificationRepository()
        self.preference_repo = preference_repo or PreferenceRepository()
        self.clock = clock

    async def enqueue(
            self,
            db: AsyncSession,
            *,
            notification_type: NotificationType,
            entity_type: EntityType,
            entity_id: str,
            to_email: str,
            payload: BaseModel,
            run_after: Optional[datetime] = None,
            discriminator: Optional[str] = None,
    ) -> NotificationJob:
        """
        Idempotent insert. A second enqueue with the same key returns the existing job.
        """
        if payload.kind != notification_type.value:
            raise ValueError(
                f"Payload kind '{payload.kind}' does not match notification type '{notification_type.value}'"
            )

        key = build_idempotency_key(notification_type.value, entity_type.value, entity_id, discriminator)
        now = self.clock()

        job, created = await self.repo.enqueue(db, job_data={
            "type": notification_type.value,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "idempotency_key": key,
            "to_email": to_email,
            "payload": p.dump_payload(payload),
            "status": NotificationStatus.pending.value,
            "attempts": 0,
            "max_attempts": self.settings.NOTIFICATION_MAX_ATTEMPTS,
            "run_after": run_after or now,
            "created_at": now,
            "updated_at": now,
        })

        if created:
            info(worker_logger, "Notification enqueued", context={
                "job_id": job.id,
                "type": notification_type.value,
                "idempotency_key": key,
                "run_after": job.run_after.isoformat(),
            })
        else:
            debug(worker_logger, "Notification already enqueued", context={
                "job_id": job.id,
                "idempotency_key": key,
                "status": job.status,
            })
        return job

    # ---- candidate notifications ----

    def _candidate_fields(self, request) -> dict:
        return {
            "candidate_name": request.candidate_name,
            "candidate_email": request.candidate_email,
            "candidate_timezone": request.candidate_timezone or DEFAULT_TIMEZONE,
            "req_title": request.req_title,
            "interview_type": request.interview_type,
            "duration_minutes": request.duration_minutes,
        }

    def _scheduled_fields(self, request: SchedulingRequest, booking: Booking) -> dict:
        return {
            "scheduled_start_utc": booking.scheduled_start,
            "scheduled_end_utc": booking.scheduled_end,
            "scheduled_start_local": format_local(booking.scheduled_start, request.candidate_timezone),
            "scheduled_end_local": format_local(booking.scheduled_end, request.candidate_timezone, with_date=False),
            "conference_join_url": booking.conference_join_url,
        }

    async def enqueue_availability_request(
            self,
            db: AsyncSession,
            request: AvailabilityRequestInfo,
            public_link: str,
            discriminator: Optional[str] = None,
    ) -> NotificationJob:
        payload = p.CandidateAvailabilityRequest(
            **self._candidate_fields(request),
            public_link=public_link,
            expires_at=request.expires_at,
            window_start=request.window_start,
            window_end=request.window_end,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.candidate_availability_request,
            entity_type=EntityType.availability_request,
            entity_id=request.id,
            to_email=request.candidate_email,
            payload=payload,
            discriminator=discriminator,
        )

    async def enqueue_self_schedule_link(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            public_link: str,
            discriminator: Optional[str] = None,
    ) -> NotificationJob:
        payload = p.CandidateSelfScheduleLink(
            **self._candidate_fields(request),
            public_link=public_link,
            expires_at=request.expires_at,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.candidate_self_schedule_link,
            entity_type=EntityType.scheduling_request,
            entity_id=request.id,
            to_email=request.candidate_email,
            payload=payload,
            discriminator=discriminator,
        )

    async def enqueue_booking_confirmation(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            discriminator: Optional[str] = None,
    ) -> NotificationJob:
        payload = p.BookingConfirmation(
            **self._candidate_fields(request),
            **self._scheduled_fields(request, booking),
            calendar_event_id=booking.calendar_event_id,
            interviewer_emails=list(request.interviewer_emails or []),
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.booking_confirmation,
            entity_type=EntityType.booking,
            entity_id=booking.id,
            to_email=request.candidate_email,
            payload=payload,
            discriminator=discriminator,
        )

    async def enqueue_reschedule_confirmation(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            old_start: datetime,
            old_end: datetime,
            reason: Optional[str] = None,
    ) -> NotificationJob:
        tz = request.candidate_timezone
        payload = p.RescheduleConfirmation(
            **self._candidate_fields(request),
            old_start_utc=old_start,
            old_end_utc=old_end,
            new_start_utc=booking.scheduled_start,
            new_end_utc=booking.scheduled_end,
            new_start_local=format_local(booking.scheduled_start, tz),
            new_end_local=format_local(booking.scheduled_end, tz, with_date=False),
            conference_join_url=booking.conference_join_url,
            reason=reason,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.reschedule_confirmation,
            entity_type=EntityType.booking,
            entity_id=booking.id,
            to_email=request.candidate_email,
            payload=payload,
            discriminator=f"reschedule-{hour_bucket(self.clock())}",
        )

    async def enqueue_cancel_notice(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            reason: str,
            cancelled_by: str,
    ) -> NotificationJob:
        payload = p.CancelNotice(
            **self._candidate_fields(request),
            reason=reason,
            cancelled_by=cancelled_by,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.cancel_notice,
            entity_type=EntityType.scheduling_request,
            entity_id=request.id,
            to_email=request.candidate_email,
            payload=payload,
        )

    async def enqueue_reminders(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
    ) -> Dict[str, Optional[NotificationJob]]:
        """
        Schedule the 24h and 2h reminders. A reminder whose fire time has
        already passed is skipped rather than sent immediately.
        """
        now = self.clock()
        scheduled = self._scheduled_fields(request, booking)
        result = {}

        for notification_type, hours in REMINDER_OFFSETS.items():
            fire_at = booking.scheduled_start - timedelta(hours=hours)
            if fire_at <= now:
                debug(worker_logger, "Reminder fire time already passed, skipping", context={
                    "booking_id": booking.id,
                    "type": notification_type.value,
                    "fire_at": fire_at.isoformat(),
                })
                result[notification_type.value] = None
                continue

            payload_cls = p.Reminder24h if notification_type == NotificationType.reminder_24h else p.Reminder2h
            payload = payload_cls(**self._candidate_fields(request), **scheduled, hours_until=hours)
            result[notification_type.value] = await self.enqueue(
                db,
                notification_type=notification_type,
                entity_type=EntityType.booking,
                entity_id=booking.id,
                to_email=request.candidate_email,
                payload=payload,
                run_after=fire_at,
                discriminator=reminder_discriminator(fire_at, booking.reschedule_count or 0),
            )

        return result

    async def cancel_pending_reminders(self, db: AsyncSession, booking_id: str) -> int:
        cancelled = await self.repo.cancel_pending_for_entity(
            db,
            entity_type=EntityType.booking.value,
            entity_id=booking_id,
            types=REMINDER_TYPES,
        )
        if cancelled:
            info(worker_logger, "Cancelled pending reminders", context={
                "booking_id": booking_id,
                "cancelled": cancelled,
            })
        return cancelled

    # ---- explicit resends: timestamp discriminator allows a new job ----

    def _resend_discriminator(self) -> str:
        return f"resend-{epoch_ms(self.clock())}"

    async def resend_self_schedule_link(self, db: AsyncSession, request: SchedulingRequest, public_link: str):
        return await self.enqueue_self_schedule_link(
            db, request, public_link, discriminator=self._resend_discriminator()
        )

    async def resend_booking_confirmation(self, db: AsyncSession, request: SchedulingRequest, booking: Booking):
        return await self.enqueue_booking_confirmation(
            db, request, booking, discriminator=self._resend_discriminator()
        )

    async def resend_availability_request(self, db: AsyncSession, request: AvailabilityRequestInfo, public_link: str):
        return await self.enqueue_availability_request(
            db, request, public_link, discriminator=self._resend_discriminator()
        )

    # ---- coordinator notifications ----

    async def should_notify_coordinator(self, db: AsyncSession, user_id: str, event: str) -> bool:
        """
        Check coordinator preferences (defaults: all on, immediate).

        A digest frequency suppresses the immediate send. No digest flush job
        exists, so the suppressed notification is only logged.
        """
        prefs = await self.preference_repo.get_for_user(db, user_id)
        if prefs is None:
            return True

        if prefs.digest_frequency != "immediate":
            warning(worker_logger, "Coordinator notification suppressed by digest preference", context={
                "user_id": user_id,
                "event": event,
                "digest_frequency": prefs.digest_frequency,
            })
            return False

        flags = {
            "booking": prefs.notify_on_booking,
            "cancel": prefs.notify_on_cancel,
            "escalation": prefs.notify_on_escalation,
        }
        return bool(flags.get(event, False))

    def _coordinator_fields(self, coordinator: Coordinator, request) -> dict:
        return {
            "coordinator_email": coordinator.email,
            "coordinator_name": coordinator.name,
            "candidate_name": request.candidate_name,
            "candidate_email": request.candidate_email,
            "req_title": request.req_title,
            "interview_type": request.interview_type,
        }

    async def enqueue_coordinator_booking(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            coordinator: Coordinator,
    ) -> Optional[NotificationJob]:
        if not await self.should_notify_coordinator(db, coordinator.user_id, "booking"):
            return None

        payload = p.CoordinatorBooking(
            **self._coordinator_fields(coordinator, request),
            scheduled_start_utc=booking.scheduled_start,
            scheduled_end_utc=booking.scheduled_end,
            scheduled_start_local=format_local(booking.scheduled_start, request.candidate_timezone),
            conference_join_url=booking.conference_join_url,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.coordinator_booking,
            entity_type=EntityType.booking,
            entity_id=booking.id,
            to_email=coordinator.email,
            payload=payload,
        )

    async def enqueue_coordinator_cancel(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            reason: Optional[str],
            coordinator: Coordinator,
    ) -> Optional[NotificationJob]:
        if not await self.should_notify_coordinator(db, coordinator.user_id, "cancel"):
            return None

        payload = p.CoordinatorCancel(
            **self._coordinator_fields(coordinator, request),
            scheduled_start_utc=booking.scheduled_start,
            scheduled_end_utc=booking.scheduled_end,
            scheduled_start_local=format_local(booking.scheduled_start, request.candidate_timezone),
            reason=reason,
        )
        return await self.enqueue(
            db,
            notification_type=NotificationType.coordinator_cancel,
            entity_type=EntityType.booking,
            entity_id=booking.id,
            to_email=coordinator.email,
            payload=payload,
            discriminator=f"cancel-{epoch_ms(self.clock())}",
        )

    async def enqueue_escalation(
            self,
            db: AsyncSession,
            request,
            request_type: str,
            coordinator: Coordinator,
            days_since_request: int,
            is_expired: bool,
    ) -> Optional[NotificationJob]:
        """
        One escalation per request per day since the request was sent.

        Args:
            request: SchedulingRequest or AvailabilityRequestInfo
            request_type: 'availability' or 'booking'
        """
        if not await self.should_notify_coordinator(db, coordinator.user_id, "escalation"):
            return None

        notification_type = NotificationType.escalation_expired if is_expired else NotificationType.escalation_no_response
        payload_cls = p.EscalationExpired if is_expired else p.EscalationNoResponse
        payload = payload_cls(
            **self._coordinator_fields(coordinator, request),
            request_id=request.id,
            request_type=request_type,
            days_since_request=days_since_request,
            public_link=f"{self.settings.APP_BASE_URL}/coordinator/{request.id}",
        )
        entity_type = EntityType.availability_request if request_type == "availability" else EntityType.scheduling_request
        return await self.enqueue(
            db,
            notification_type=notification_type,
            entity_type=entity_type,
            entity_id=request.id,
            to_email=coordinator.email,
            payload=payload,
            discriminator=f"escalation-day-{days_since_request}",
        )

    # ---- booking lifecycle ----

    async def on_booking_confirmed(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            coordinator: Optional[Coordinator] = None,
    ) -> Dict[str, Optional[NotificationJob]]:
        jobs = {"booking_confirmation": await self.enqueue_booking_confirmation(db, request, booking)}
        jobs.update(await self.enqueue_reminders(db, request, booking))
        if coordinator:
            jobs["coordinator_booking"] = await self.enqueue_coordinator_booking(db, request, booking, coordinator)
        return jobs

    async def on_booking_cancelled(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            reason: str,
            cancelled_by: str,
            coordinator: Optional[Coordinator] = None,
    ) -> Dict[str, Optional[NotificationJob]]:
        await self.cancel_pending_reminders(db, booking.id)
        jobs = {"cancel_notice": await self.enqueue_cancel_notice(db, request, reason, cancelled_by)}
        if coordinator:
            jobs["coordinator_cancel"] = await self.enqueue_coordinator_cancel(
                db, request, booking, reason, coordinator
            )
        return jobs

    async def on_booking_rescheduled(
            self,
            db: AsyncSession,
            request: SchedulingRequest,
            booking: Booking,
            old_start: datetime,
            old_end: datetime,
            reason: Optional[str] = None,
    ) -> Dict[str, Optional[NotificationJob]]:
        """
        Cancel the old reminders, confirm the new time and schedule fresh reminders.
        booking.reschedule_count must already be incremented by the caller.
        """
        await self.cancel_pending_reminders(db, booking.id)
        jobs = {
            "reschedule_confirmation": await self.enqueue_reschedule_confirmation(
                db, request, booking, old_start, old_end, reason
            )
        }
        jobs.update(await self.enqueue_reminders(db, request, booking))
        return jobs

    # ---- operator actions ----

    async def requeue_failed(
            self,
            db: AsyncSession,
            job_id: str,
            reset_attempts: bool = False,
    ) -> Optional[NotificationJob]:
        """Move a FAILED job back to PENDING; None if missing or not failed"""
        requeued = await self.repo.requeue_failed(
            db,
            job_id=job_id,
            now=self.clock(),
            reset_attempts=reset_attempts,
        )
        if not requeued:
            return None

        info(worker_logger, "Failed notification requeued", context={
            "job_id": job_id,
            "reset_attempts": reset_attempts,
        })
        return await self.repo.get(db, job_id)

    async def get_for_entity(self, db: AsyncSession, entity_type: str, entity_id: str) -> List[NotificationJob]:
        return await self.repo.get_by_entity(db, entity_type, entity_id)
