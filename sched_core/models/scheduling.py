from sqlalchemy import Column, String, Integer, Text, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship

from sched_core.constants.job_types import RequestStatus, BookingStatus
from sched_core.models.base_model import BaseModel, UTCDateTime, utc_now


class SchedulingRequest(BaseModel):
    """Local scheduling state read and repaired by the coordination workers"""

    __tablename__ = "scheduling_requests"

    # Context from the ATS
    application_id = Column(String(64), nullable=True, index=True)
    req_id = Column(String(64), nullable=True, index=True)
    candidate_name = Column(String(255), nullable=False)
    candidate_email = Column(String(320), nullable=False)
    candidate_timezone = Column(String(64), nullable=False, default="UTC")
    req_title = Column(String(255), nullable=False)
    interview_type = Column(String(32), nullable=False, default="phone_screen")
    duration_minutes = Column(Integer, nullable=False, default=30)
    organizer_email = Column(String(320), nullable=False)
    interviewer_emails = Column(JSON, nullable=False, default=list)
    created_by = Column(String(64), nullable=True)

    public_token = Column(String(128), nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, default=RequestStatus.pending.value, index=True)

    # Last status reported by the ATS webhook feed
    ats_status = Column(String(64), nullable=True)

    needs_attention = Column(Boolean, nullable=False, default=False, index=True)
    needs_attention_reason = Column(Text, nullable=True)

    # Last time the coordinator was told this request is stuck
    last_escalated_at = Column(UTCDateTime, nullable=True, index=True)

    bookings = relationship("Booking", back_populates="request", lazy="selectin")


class Booking(BaseModel):
    __tablename__ = "bookings"

    request_id = Column(
        String(36),
        ForeignKey("scheduling_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scheduled_start = Column(UTCDateTime, nullable=False, index=True)
    scheduled_end = Column(UTCDateTime, nullable=False)

    # External state
    calendar_event_id = Column(String(255), nullable=True)
    calendar_event_status = Column(String(32), nullable=True)
    conference_join_url = Column(Text, nullable=True)
    icims_activity_id = Column(String(255), nullable=True)

    status = Column(String(16), nullable=False, default=BookingStatus.confirmed.value, index=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    reschedule_count = Column(Integer, nullable=False, default=0)

    # Detection scans visit the least recently checked bookings first
    last_reconciled_at = Column(UTCDateTime, nullable=True, index=True)

    booked_by = Column(String(64), nullable=False, default="system")
    booked_at = Column(UTCDateTime, nullable=False, default=utc_now)

    request = relationship("SchedulingRequest", back_populates="bookings", lazy="selectin")
