from sqlalchemy import Column, String, Integer, Text, JSON, Boolean, Index

from sched_core.constants.queue_status import WebhookStatus
from sched_core.models.base_model import BaseModel, UTCDateTime, utc_now


class WebhookEvent(BaseModel):
    __tablename__ = "webhook_events"

    provider = Column(String(32), nullable=False, default="icims")
    event_id = Column(String(255), nullable=True)
    event_type = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    payload_hash = Column(String(64), nullable=False)

    # "event:{id}" or "hash:{sha256}"; NULL for unverified events
    dedup_key = Column(String(320), nullable=True, unique=True)
    signature = Column(Text, nullable=True)
    verified = Column(Boolean, nullable=False, default=False)

    # Status and retry
    status = Column(String(16), nullable=False, default=WebhookStatus.received.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    run_after = Column(UTCDateTime, nullable=False, default=utc_now)
    claimed_at = Column(UTCDateTime, nullable=True)
    processed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_claim", "status", "verified", "run_after"),
    )
