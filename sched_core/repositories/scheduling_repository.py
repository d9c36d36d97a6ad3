from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, and_, or_, exists, func
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import RequestStatus, BookingStatus
from sched_core.models.scheduling import SchedulingRequest, Booking
from sched_core.repositories.base_repository import AsyncBaseRepository

# Local calendar_event_status values meaning the external event is gone
CLOSED_CALENDAR_STATUSES = ("cancelled", "deleted")


class SchedulingRequestRepository(AsyncBaseRepository[SchedulingRequest]):
    def __init__(self):
        super().__init__(SchedulingRequest)

    async def get_by_application_id(self, db: AsyncSession, application_id: str) -> List[SchedulingRequest]:
        return await self.get_by_condition(db, {"application_id": application_id})

    async def get_by_candidate_email(self, db: AsyncSession, email: str) -> List[SchedulingRequest]:
        return await self.get_by_condition(db, {"candidate_email": email})

    async def get_expired_pending(self, db: AsyncSession, *, now: datetime, limit: int) -> List[SchedulingRequest]:
        stmt = (
            select(SchedulingRequest)
            .where(
                and_(
                    SchedulingRequest.status == RequestStatus.pending.value,
                    SchedulingRequest.expires_at < now,
                )
            )
            .order_by(SchedulingRequest.expires_at.asc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_pending_with_confirmed_booking(self, db: AsyncSession, *, limit: int) -> List[SchedulingRequest]:
        has_booking = exists().where(
            and_(
                Booking.request_id == SchedulingRequest.id,
                Booking.status == BookingStatus.confirmed.value,
            )
        )
        stmt = (
            select(SchedulingRequest)
            .where(and_(SchedulingRequest.status == RequestStatus.pending.value, has_booking))
            .order_by(SchedulingRequest.created_at.asc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    def _escalation_due(self, *, now: datetime, no_response_before: datetime, repeat_before: datetime):
        """
        Requests the coordinator should hear about: pending with no answer past
        the no-response threshold (once per repeat window), or past their expiry
        and not yet escalated since expiring.
        """
        has_booking = exists().where(
            and_(
                Booking.request_id == SchedulingRequest.id,
                Booking.status == BookingStatus.confirmed.value,
            )
        )
        no_response = and_(
            SchedulingRequest.status == RequestStatus.pending.value,
            SchedulingRequest.expires_at >= now,
            SchedulingRequest.created_at <= no_response_before,
            or_(
                SchedulingRequest.last_escalated_at.is_(None),
                SchedulingRequest.last_escalated_at <= repeat_before,
            ),
        )
        expired = and_(
            SchedulingRequest.status.in_([RequestStatus.pending.value, RequestStatus.expired.value]),
            SchedulingRequest.expires_at < now,
            or_(
                SchedulingRequest.last_escalated_at.is_(None),
                SchedulingRequest.last_escalated_at < SchedulingRequest.expires_at,
            ),
        )
        return and_(~has_booking, or_(no_response, expired))

    async def get_escalation_due(
            self,
            db: AsyncSession,
            *,
            now: datetime,
            no_response_before: datetime,
            repeat_before: datetime,
            limit: int,
    ) -> List[SchedulingRequest]:
        stmt = (
            select(SchedulingRequest)
            .where(self._escalation_due(now=now, no_response_before=no_response_before, repeat_before=repeat_before))
            .order_by(SchedulingRequest.last_escalated_at.asc().nulls_first(), SchedulingRequest.created_at.asc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def count_escalation_due(
            self,
            db: AsyncSession,
            *,
            now: datetime,
            no_response_before: datetime,
            repeat_before: datetime,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(SchedulingRequest)
            .where(self._escalation_due(now=now, no_response_before=no_response_before, repeat_before=repeat_before))
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    async def flag_attention(self, db: AsyncSession, *, request_id: str, reason: str) -> bool:
        """
        Set needs_attention; returns False when the flag was already set.
        """
        return await self.compare_and_set(
            db,
            id=request_id,
            expected={"needs_attention": False},
            values={"needs_attention": True, "needs_attention_reason": reason},
        )


class BookingRepository(AsyncBaseRepository[Booking]):
    def __init__(self):
        super().__init__(Booking)

    async def get_by_calendar_event_id(self, db: AsyncSession, event_id: str) -> Optional[Booking]:
        return await self.get_one_by_condition(db, {"calendar_event_id": event_id})

    async def get_confirmed_for_request(self, db: AsyncSession, request_id: str) -> Optional[Booking]:
        return await self.get_one_by_condition(db, {
            "request_id": request_id,
            "status": BookingStatus.confirmed.value,
        })

    async def get_confirmed_past_grace(self, db: AsyncSession, *, cutoff: datetime, limit: int) -> List[Booking]:
        """
        Confirmed bookings old enough that their calendar event and ATS note must exist.

        Never-checked bookings come first, then the least recently checked, so
        repeated bounded scans rotate through the whole table.
        """
        stmt = (
            select(Booking)
            .where(
                and_(
                    Booking.status == BookingStatus.confirmed.value,
                    Booking.confirmed_at.is_not(None),
                    Booking.confirmed_at <= cutoff,
                )
            )
            .order_by(Booking.last_reconciled_at.asc().nulls_first(), Booking.confirmed_at.asc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_cancelled_with_live_event(self, db: AsyncSession, *, limit: int) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(
                and_(
                    Booking.status == BookingStatus.cancelled.value,
                    Booking.calendar_event_id.is_not(None),
                    or_(
                        Booking.calendar_event_status.is_(None),
                        Booking.calendar_event_status.not_in(CLOSED_CALENDAR_STATUSES),
                    ),
                )
            )
            .order_by(Booking.last_reconciled_at.asc().nulls_first(), Booking.cancelled_at.asc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
