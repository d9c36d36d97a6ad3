from sched_core.models.base_model import BaseModel, UTCDateTime
from sched_core.models.notification_job import NotificationJob, NotificationAttempt
from sched_core.models.webhook_event import WebhookEvent
from sched_core.models.reconciliation_job import ReconciliationJob
from sched_core.models.job_lock import JobLock
from sched_core.models.job_run import JobRun
from sched_core.models.scheduling import SchedulingRequest, Booking
from sched_core.models.audit_log import AuditLog
from sched_core.models.coordinator_preference import CoordinatorPreference

__all__ = [
    "BaseModel",
    "UTCDateTime",
    "NotificationJob",
    "NotificationAttempt",
    "WebhookEvent",
    "ReconciliationJob",
    "JobLock",
    "JobRun",
    "SchedulingRequest",
    "Booking",
    "AuditLog",
    "CoordinatorPreference",
]
