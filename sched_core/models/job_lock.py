from sqlalchemy import Column, String

from sched_core.db import Base
from sched_core.models.base_model import UTCDateTime, utc_now


class JobLock(Base):
    """One row per locked resource; the primary key enforces a single holder"""

    __tablename__ = "job_locks"

    resource_name = Column(String(100), primary_key=True)
    holder_id = Column(String(64), nullable=False)
    acquired_at = Column(UTCDateTime, nullable=False, default=utc_now)
    expires_at = Column(UTCDateTime, nullable=False)
