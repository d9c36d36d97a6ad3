from sqlalchemy import Column, String, Integer, Text, JSON, ForeignKey, Index, Boolean

from sched_core.constants.queue_status import NotificationStatus
from sched_core.models.base_model import BaseModel, UTCDateTime, utc_now


class NotificationJob(BaseModel):
    __tablename__ = "notification_jobs"

    # What the job acts on
    type = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    idempotency_key = Column(String(255), nullable=False, unique=True)

    # Message data
    to_email = Column(String(320), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    # Status and scheduling
    status = Column(String(16), nullable=False, default=NotificationStatus.pending.value, index=True)
    run_after = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    claimed_at = Column(UTCDateTime, nullable=True)
    claimed_by = Column(String(64), nullable=True)

    # Retry logic
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    last_error = Column(Text, nullable=True)
    sent_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_notification_jobs_status_run_after", "status", "run_after"),
        Index("ix_notification_jobs_entity", "entity_type", "entity_id"),
    )


class NotificationAttempt(BaseModel):
    __tablename__ = "notification_attempts"

    notification_job_id = Column(
        String(36),
        ForeignKey("notification_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attempt_number = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)
    error = Column(Text, nullable=True)
    retryable = Column(Boolean, nullable=True)
    provider_message_id = Column(String(255), nullable=True)
