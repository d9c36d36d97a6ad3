from sqlalchemy import Column, String, JSON

from sched_core.models.base_model import BaseModel


class AuditLog(BaseModel):
    __tablename__ = "audit_logs"

    request_id = Column(String(36), nullable=True, index=True)
    booking_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    actor_type = Column(String(16), nullable=False, default="system")
    actor_id = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
