from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class JobRunResponse(BaseModel):
    """Schema for a recorded worker execution"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_name: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    processed: int
    failed: int
    skipped: int
    queue_depth_before: Optional[int] = None
    queue_depth_after: Optional[int] = None
    triggered_by: str
    instance_id: str
    error_summary: Optional[str] = None
    error_details: Optional[Any] = None


class BatchResult(BaseModel):
    """Outcome of one process_batch call"""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = []


class JobRunSummary(BaseModel):
    """Response body of a trigger endpoint"""
    success: bool
    job_name: str
    run_id: Optional[str] = None
    status: str
    instance_id: str
    triggered_by: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    queue_depth_before: Optional[int] = None
    queue_depth_after: Optional[int] = None
    duration_ms: Optional[int] = None
    message: Optional[str] = None
    errors: List[Dict[str, Any]] = []


class LockState(BaseModel):
    held: bool
    holder_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class JobHealth(BaseModel):
    """Per-job health row for the ops surface"""
    job_name: str
    last_run: Optional[JobRunResponse] = None
    queue_depth: int
    failure_rate_24h: float
    lock: LockState
