from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned to the webhook sender"""
    model_config = ConfigDict(populate_by_name=True)

    received: bool = True
    webhook_id: str = Field(alias="webhookId")
    event_id: Optional[str] = Field(default=None, alias="eventId")
    is_duplicate: bool = Field(default=False, alias="isDuplicate")
    verified: bool
    message: str


class WebhookEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    event_id: Optional[str] = None
    event_type: str
    verified: bool
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    payload: Dict[str, Any]


class ReconciliationJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_type: str
    entity_type: str
    entity_id: str
    detection_reason: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    details: Dict[str, Any]
