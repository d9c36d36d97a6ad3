from sqlalchemy import Column, String, Boolean

from sched_core.models.base_model import BaseModel


class CoordinatorPreference(BaseModel):
    __tablename__ = "coordinator_preferences"

    user_id = Column(String(64), nullable=False, unique=True)
    email = Column(String(320), nullable=True)
    notify_on_booking = Column(Boolean, nullable=False, default=True)
    notify_on_cancel = Column(Boolean, nullable=False, default=True)
    notify_on_escalation = Column(Boolean, nullable=False, default=True)
    # immediate | daily | weekly
    digest_frequency = Column(String(16), nullable=False, default="immediate")
