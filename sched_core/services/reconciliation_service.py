"""
Reconciliation Engine

Detection compares local scheduling state with the calendar and ATS and records
one reconciliation job per drifted (entity, job type). Processing re-evaluates
the drift before touching anything, so a job that sits in the queue while the
state fixes itself completes as a no-op.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import (
    AuditAction,
    BookingStatus,
    EntityType,
    ReconciliationJobType,
    RequestStatus,
)
from sched_core.constants.queue_status import ReconciliationStatus
from sched_core.core.backoff import RetryPolicy, retry_bookkeeping
from sched_core.core.clock import Clock, ensure_utc, utc_now
from sched_core.core.config import Settings
from sched_core.core.errors import AmbiguousDriftError, ClaimExpiredError, describe_error
from sched_core.core.logger import info, debug, warning, error
from sched_core.core.setup_logger import worker_logger
from sched_core.integrations.ats import AtsClient, build_ats_client
from sched_core.integrations.calendar import CalendarClient, build_calendar_client
from sched_core.models.reconciliation_job import ReconciliationJob
from sched_core.models.scheduling import Booking, SchedulingRequest
from sched_core.repositories.audit_repository import AuditRepository
from sched_core.repositories.reconciliation_repository import ReconciliationRepository
from sched_core.repositories.scheduling_repository import (
    CLOSED_CALENDAR_STATUSES,
    BookingRepository,
    SchedulingRequestRepository,
)


class Repair:
    create_event = "create_event"
    add_note = "add_note"
    mark_expired = "mark_expired"
    mark_booked = "mark_booked"
    cancel_event = "cancel_event"
    manual = "manual"


class Drift(BaseModel):
    job_type: str
    entity_type: str
    entity_id: str
    reason: str
    repair: str
    safe: bool = True
    snapshot: Dict[str, Any] = {}

    def details(self) -> Dict[str, Any]:
        return {"repair": self.repair, "safe": self.safe, "snapshot": self.snapshot}


def note_key(booking_id: str) -> str:
    return f"reconcile:{booking_id}:note"


class ReconciliationService:
    def __init__(
            self,
            settings: Settings,
            calendar: CalendarClient = None,
            ats: AtsClient = None,
            repo: ReconciliationRepository = None,
            request_repo: SchedulingRequestRepository = None,
            booking_repo: BookingRepository = None,
            audit_repo: AuditRepository = None,
            clock: Clock = utc_now,
            rng=None,
    ):
        self.settings = settings
        self.calendar = calendar or build_calendar_client(settings)
        self.ats = ats or build_ats_client(settings)
        self.repo = repo or ReconciliationRepository()
        self.request_repo = request_repo or SchedulingRequestRepository()
        self.booking_repo = booking_repo or BookingRepository()
        self.audit_repo = audit_repo or AuditRepository()
        self.clock = clock
        self.rng = rng

    async def _call(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS)

    def grace_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(minutes=self.settings.RECONCILIATION_GRACE_MINUTES)

    # ------------------------------------------------------------------
    # Drift evaluation (read-only)
    # ------------------------------------------------------------------

    async def booking_drifts(self, booking: Booking, now: datetime) -> List[Drift]:
        if booking.status == BookingStatus.cancelled.value:
            drift = await self._cancelled_event_drift(booking)
            return [drift] if drift else []

        if booking.status != BookingStatus.confirmed.value or booking.confirmed_at is None:
            return []
        if ensure_utc(booking.confirmed_at) > self.grace_cutoff(now):
            return []

        drifts = []
        calendar_drift = await self._calendar_drift(booking)
        if calendar_drift:
            drifts.append(calendar_drift)
        note_drift = await self._note_drift(booking)
        if note_drift:
            drifts.append(note_drift)
        return drifts

    async def _calendar_drift(self, booking: Booking) -> Optional[Drift]:
        snapshot = {
            "calendar_event_id": booking.calendar_event_id,
            "calendar_event_status": booking.calendar_event_status,
        }
        if not booking.calendar_event_id:
            return Drift(
                job_type=ReconciliationJobType.calendar_event_missing.value,
                entity_type=EntityType.booking.value,
                entity_id=booking.id,
                reason="Confirmed booking has no calendar event",
                repair=Repair.create_event,
                snapshot=snapshot,
            )

        if booking.calendar_event_status == "cancelled":
            event_status = "cancelled"
        else:
            event = await self._call(self.calendar.get_event(booking.calendar_event_id))
            if event is None:
                return Drift(
                    job_type=ReconciliationJobType.calendar_event_missing.value,
                    entity_type=EntityType.booking.value,
                    entity_id=booking.id,
                    reason=f"Calendar event {booking.calendar_event_id} no longer exists",
                    repair=Repair.create_event,
                    snapshot=snapshot,
                )
            event_status = event.status

        if event_status == "cancelled":
            # Someone cancelled the meeting outside the system; rebooking or
            # cancelling locally both need a human decision
            return Drift(
                job_type=ReconciliationJobType.state_mismatch.value,
                entity_type=EntityType.booking.value,
                entity_id=booking.id,
                reason=f"Calendar event {booking.calendar_event_id} was cancelled externally",
                repair=Repair.manual,
                safe=False,
                snapshot=snapshot,
            )
        return None

    async def _note_drift(self, booking: Booking) -> Optional[Drift]:
        request = booking.request
        if request is None or not request.application_id:
            return None

        if booking.icims_activity_id:
            exists = await self._call(self.ats.note_exists(request.application_id, booking.icims_activity_id))
            if exists:
                return None
            reason = f"ATS note {booking.icims_activity_id} is missing"
        else:
            reason = "Confirmed booking has no ATS note"

        return Drift(
            job_type=ReconciliationJobType.icims_note_missing.value,
            entity_type=EntityType.booking.value,
            entity_id=booking.id,
            reason=reason,
            repair=Repair.add_note,
            snapshot={"application_id": request.application_id, "icims_activity_id": booking.icims_activity_id},
        )

    async def _cancelled_event_drift(self, booking: Booking) -> Optional[Drift]:
        if not booking.calendar_event_id or booking.calendar_event_status in CLOSED_CALENDAR_STATUSES:
            return None

        event = await self._call(self.calendar.get_event(booking.calendar_event_id))
        if event is None or event.status == "cancelled":
            # Already gone on the calendar side; record it so later scans skip the booking
            booking.calendar_event_status = "deleted" if event is None else "cancelled"
            return None

        return Drift(
            job_type=ReconciliationJobType.state_mismatch.value,
            entity_type=EntityType.booking.value,
            entity_id=booking.id,
            reason=f"Booking is cancelled but calendar event {booking.calendar_event_id} is still live",
            repair=Repair.cancel_event,
            snapshot={"calendar_event_id": booking.calendar_event_id},
        )

    async def request_drifts(self, db: AsyncSession, request: SchedulingRequest, now: datetime) -> List[Drift]:
        if request.status != RequestStatus.pending.value:
            return []

        # A confirmed booking is stronger evidence than the expiry clock
        booking = await self.booking_repo.get_confirmed_for_request(db, request.id)
        if booking is not None:
            return [Drift(
                job_type=ReconciliationJobType.state_mismatch.value,
                entity_type=EntityType.scheduling_request.value,
                entity_id=request.id,
                reason="Request is pending but has a confirmed booking",
                repair=Repair.mark_booked,
                snapshot={"status": request.status, "booking_id": booking.id},
            )]

        if request.expires_at is not None and ensure_utc(request.expires_at) < now:
            return [Drift(
                job_type=ReconciliationJobType.state_mismatch.value,
                entity_type=EntityType.scheduling_request.value,
                entity_id=request.id,
                reason="Request is pending past its expiry",
                repair=Repair.mark_expired,
                snapshot={"status": request.status, "expires_at": ensure_utc(request.expires_at).isoformat()},
            )]
        return []

    async def evaluate(self, db: AsyncSession, job: ReconciliationJob, now: datetime) -> Optional[Drift]:
        """Current drift for the job's entity and type, or None once it has gone away"""
        if job.entity_type == EntityType.booking.value:
            booking = await self.booking_repo.get(db, job.entity_id)
            drifts = await self.booking_drifts(booking, now) if booking else []
        elif job.entity_type == EntityType.scheduling_request.value:
            request = await self.request_repo.get(db, job.entity_id)
            drifts = await self.request_drifts(db, request, now) if request else []
        else:
            raise ValueError(f"Unsupported reconciliation entity type: '{job.entity_type}'")

        for drift in drifts:
            if drift.job_type == job.job_type:
                return drift
        return None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def run_detection(self, db: AsyncSession) -> Dict[str, int]:
        """
        Scan for drift and enqueue one reconciliation job per drifted entity and type

        Returns:
            Counts of scanned entities, created jobs, drifts that already had an
            open job, and entities whose check failed
        """
        now = self.clock()
        limit = self.settings.RECONCILIATION_SCAN_LIMIT
        stats = {"scanned": 0, "created": 0, "existing": 0, "errors": 0}

        bookings = await self.booking_repo.get_confirmed_past_grace(db, cutoff=self.grace_cutoff(now), limit=limit)
        bookings += await self.booking_repo.get_cancelled_with_live_event(db, limit=limit)
        requests = await self.request_repo.get_pending_with_confirmed_booking(db, limit=limit)
        requests += await self.request_repo.get_expired_pending(db, now=now, limit=limit)

        drifts: List[Drift] = []
        for booking in bookings:
            stats["scanned"] += 1
            try:
                drifts.extend(await self.booking_drifts(booking, now))
            except Exception as e:
                # One unreachable entity must not stop the scan
                stats["errors"] += 1
                warning(worker_logger, "Drift check failed for booking", context={
                    "booking_id": booking.id,
                    "error": describe_error(e),
                })
            # Checked bookings move to the back of the next scan
            booking.last_reconciled_at = now

        seen_requests = set()
        for request in requests:
            if request.id in seen_requests:
                continue
            seen_requests.add(request.id)
            stats["scanned"] += 1
            drifts.extend(await self.request_drifts(db, request, now))

        for drift in drifts:
            if await self._record(db, drift, now):
                stats["created"] += 1
            else:
                stats["existing"] += 1

        await db.commit()

        if stats["created"] or stats["errors"]:
            info(worker_logger, "Reconciliation detection finished", context=stats)
        else:
            debug(worker_logger, "Reconciliation detection found no new drift", context=stats)
        return stats

    async def _record(self, db: AsyncSession, drift: Drift, now: datetime) -> bool:
        existing = await self.repo.find_open(
            db,
            entity_type=drift.entity_type,
            entity_id=drift.entity_id,
            job_type=drift.job_type,
        )
        if existing is not None:
            return False

        job = await self.repo.create(db, obj_in={
            "job_type": drift.job_type,
            "entity_type": drift.entity_type,
            "entity_id": drift.entity_id,
            "detection_reason": drift.reason,
            "details": drift.details(),
            "status": ReconciliationStatus.pending.value,
            "attempts": 0,
            "max_attempts": self.settings.RECONCILIATION_MAX_ATTEMPTS,
            "run_after": now,
        })
        await self.audit_repo.log(
            db,
            action=AuditAction.reconciliation_detected.value,
            **self._refs(drift.entity_type, drift.entity_id),
            payload={
                "reconciliation_job_id": job.id,
                "job_type": drift.job_type,
                "reason": drift.reason,
                "repair": drift.repair,
                "safe": drift.safe,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_job(self, db: AsyncSession, job_id: str, claimed_at: datetime) -> str:
        """
        Re-evaluate and repair one claimed job

        Returns:
            completed, requires_attention, retry, failed or skipped (claim lost)
        """
        job = await self.repo.get(db, job_id)
        if job is None:
            return "skipped"

        now = self.clock()
        try:
            drift = await self.evaluate(db, job, now)
            if drift is None:
                return await self._complete(db, job, claimed_at, {"noop": True})
            if not drift.safe:
                raise AmbiguousDriftError(drift.reason)
            repair_result = await self._repair(db, drift)
            return await self._complete(db, job, claimed_at, {"repair": drift.repair, **repair_result})
        except AmbiguousDriftError as e:
            await db.rollback()
            return await self._requires_attention(db, job_id, claimed_at, str(e))
        except Exception as e:
            await db.rollback()
            return await self._handle_failure(db, job_id, claimed_at, e)

    async def expire_claim(self, db: AsyncSession, job_id: str, claimed_at: datetime) -> str:
        """Book a job whose previous claim expired as one failed attempt"""
        return await self._handle_failure(db, job_id, claimed_at, ClaimExpiredError())

    async def _complete(self, db: AsyncSession, job: ReconciliationJob, claimed_at: datetime, result: Dict[str, Any]) -> str:
        now = self.clock()
        won = await self.repo.finish_claimed(db, item_id=job.id, claimed_at=claimed_at, values={
            "status": ReconciliationStatus.completed.value,
            "completed_at": now,
            "attempts": (job.attempts or 0) + 1,
            "last_error": None,
            "details": {**(job.details or {}), "result": result},
        })
        if not won:
            await db.rollback()
            warning(worker_logger, "Reconciliation claim lost before completion", context={"job_id": job.id})
            return "skipped"

        if not result.get("noop"):
            await self.audit_repo.log(
                db,
                action=AuditAction.reconciliation_repaired.value,
                **self._job_audit_refs(job),
                payload={"reconciliation_job_id": job.id, "job_type": job.job_type, **result},
            )
        await db.commit()

        info(worker_logger, "Reconciliation job completed", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "entity_id": job.entity_id,
            "noop": bool(result.get("noop")),
        })
        return "completed"

    async def _repair(self, db: AsyncSession, drift: Drift) -> Dict[str, Any]:
        if drift.repair in (Repair.mark_expired, Repair.mark_booked):
            target = RequestStatus.expired.value if drift.repair == Repair.mark_expired else RequestStatus.booked.value
            changed = await self.request_repo.compare_and_set(
                db,
                id=drift.entity_id,
                expected={"status": RequestStatus.pending.value},
                values={"status": target},
            )
            return {"status": target, "changed": changed}

        booking = await self.booking_repo.get(db, drift.entity_id)
        if booking is None:
            raise ValueError(f"Booking {drift.entity_id} disappeared")

        if drift.repair == Repair.create_event:
            request = booking.request
            attendees = [request.candidate_email, request.organizer_email] + list(request.interviewer_emails or [])
            event = await self._call(self.calendar.create_event(
                subject=f"Interview: {request.candidate_name} - {request.req_title}",
                start=booking.scheduled_start,
                end=booking.scheduled_end,
                attendees=attendees,
            ))
            booking.calendar_event_id = event.id
            booking.calendar_event_status = event.status
            await db.flush()
            return {"calendar_event_id": event.id}

        if drift.repair == Repair.add_note:
            request = booking.request
            start = ensure_utc(booking.scheduled_start)
            text = (
                f"Interview scheduled for {request.candidate_name} ({request.req_title}) "
                f"at {start.strftime('%Y-%m-%d %H:%M')} UTC"
            )
            activity_id = await self._call(self.ats.add_note(request.application_id, text, note_key(booking.id)))
            booking.icims_activity_id = activity_id
            await db.flush()
            return {"icims_activity_id": activity_id}

        if drift.repair == Repair.cancel_event:
            await self._call(self.calendar.cancel_event(booking.calendar_event_id))
            booking.calendar_event_status = "cancelled"
            await db.flush()
            return {"calendar_event_id": booking.calendar_event_id}

        raise ValueError(f"Unknown repair: '{drift.repair}'")

    async def _requires_attention(self, db: AsyncSession, job_id: str, claimed_at: datetime, reason: str) -> str:
        job = await self.repo.get(db, job_id)
        won = await self.repo.finish_claimed(db, item_id=job.id, claimed_at=claimed_at, values={
            "status": ReconciliationStatus.requires_attention.value,
            "attempts": (job.attempts or 0) + 1,
            "last_error": reason,
        })
        if not won:
            await db.rollback()
            return "skipped"

        await self._flag_entity(db, job, reason)
        await db.commit()

        warning(worker_logger, "Reconciliation requires attention", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "entity_id": job.entity_id,
            "reason": reason,
        })
        return "requires_attention"

    async def _handle_failure(self, db: AsyncSession, job_id: str, claimed_at: datetime, exc: BaseException) -> str:
        job = await self.repo.get(db, job_id)
        now = self.clock()
        policy = RetryPolicy.from_settings(self.settings, max_attempts=job.max_attempts, rng=self.rng)
        values, terminal, kind = retry_bookkeeping(job, exc, now, policy)
        values["status"] = ReconciliationStatus.failed.value if terminal else ReconciliationStatus.pending.value

        won = await self.repo.finish_claimed(db, item_id=job.id, claimed_at=claimed_at, values=values)
        if not won:
            await db.rollback()
            return "skipped"

        if terminal:
            await self.audit_repo.log(
                db,
                action=AuditAction.reconciliation_failed.value,
                **self._job_audit_refs(job),
                payload={
                    "reconciliation_job_id": job.id,
                    "job_type": job.job_type,
                    "error": values["last_error"],
                    "error_class": kind,
                    "attempts": values["attempts"],
                },
            )
            await self._flag_entity(db, job, f"Reconciliation {job.job_type} failed: {values['last_error']}")
        await db.commit()

        error(worker_logger, "Reconciliation job failed" if terminal else "Reconciliation job failed, will retry", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "error": values["last_error"],
            "error_class": kind,
            "attempts": values["attempts"],
            "max_attempts": job.max_attempts,
        })
        return "failed" if terminal else "retry"

    async def _flag_entity(self, db: AsyncSession, job: ReconciliationJob, reason: str) -> None:
        refs = self._job_audit_refs(job)
        request_id = refs.get("request_id")
        if request_id is None and job.entity_type == EntityType.booking.value:
            booking = await self.booking_repo.get(db, job.entity_id)
            request_id = booking.request_id if booking else None
            refs["request_id"] = request_id
        if request_id is None:
            return

        reason = reason[:500]
        if await self.request_repo.flag_attention(db, request_id=request_id, reason=reason):
            await self.audit_repo.log(db, action=AuditAction.needs_attention_set.value, **refs, payload={
                "source": "reconciliation",
                "reconciliation_job_id": job.id,
                "reason": reason,
            })

    @staticmethod
    def _refs(entity_type: str, entity_id: str) -> Dict[str, Optional[str]]:
        if entity_type == EntityType.booking.value:
            return {"booking_id": entity_id}
        return {"request_id": entity_id}

    def _job_audit_refs(self, job: ReconciliationJob) -> Dict[str, Optional[str]]:
        return self._refs(job.entity_type, job.entity_id)
