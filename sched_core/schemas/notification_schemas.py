from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class NotificationJobResponse(BaseModel):
    """Schema for notification job response"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    entity_type: str
    entity_id: str
    idempotency_key: str
    to_email: str
    status: str
    attempts: int
    max_attempts: int
    run_after: datetime
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    payload: Dict[str, Any]


class AvailabilityRequestInfo(BaseModel):
    """Availability request data owned by the surrounding application"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    candidate_name: str
    candidate_email: str
    candidate_timezone: Optional[str] = None
    req_title: str
    interview_type: str
    duration_minutes: int
    expires_at: datetime
    window_start: datetime
    window_end: datetime


class Coordinator(BaseModel):
    user_id: str
    email: str
    name: str
