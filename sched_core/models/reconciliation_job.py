from sqlalchemy import Column, String, Integer, Text, JSON, Index

from sched_core.constants.queue_status import ReconciliationStatus
from sched_core.models.base_model import BaseModel, UTCDateTime, utc_now


class ReconciliationJob(BaseModel):
    __tablename__ = "reconciliation_jobs"

    job_type = Column(String(64), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    detection_reason = Column(Text, nullable=False)

    # Snapshot of what detection saw, plus the chosen repair
    details = Column(JSON, nullable=False, default=dict)

    status = Column(String(32), nullable=False, default=ReconciliationStatus.pending.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    run_after = Column(UTCDateTime, nullable=False, default=utc_now)
    claimed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_reconciliation_jobs_entity", "entity_type", "entity_id", "job_type"),
    )
