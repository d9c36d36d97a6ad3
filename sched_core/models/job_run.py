from sqlalchemy import Column, String, Integer, Text, JSON, Index

from sched_core.constants.queue_status import JobRunStatus
from sched_core.models.base_model import BaseModel, UTCDateTime, utc_now


class JobRun(BaseModel):
    __tablename__ = "job_runs"

    job_name = Column(String(64), nullable=False)
    started_at = Column(UTCDateTime, nullable=False, default=utc_now)
    finished_at = Column(UTCDateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default=JobRunStatus.running.value, index=True)

    # Counters
    processed = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    queue_depth_before = Column(Integer, nullable=True)
    queue_depth_after = Column(Integer, nullable=True)

    # Trigger metadata
    triggered_by = Column(String(16), nullable=False)
    instance_id = Column(String(64), nullable=False)

    error_summary = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_job_runs_job_name_started_at", "job_name", "started_at"),
    )
