from enum import Enum


class NotificationStatus(Enum):
    pending = "PENDING"
    sending = "SENDING"
    sent = "SENT"
    failed = "FAILED"
    canceled = "CANCELED"


class WebhookStatus(Enum):
    received = "received"
    processing = "processing"
    processed = "processed"
    failed = "failed"


class ReconciliationStatus(Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    requires_attention = "requires_attention"


class JobRunStatus(Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    locked = "locked"


class AttemptStatus(Enum):
    success = "success"
    failure = "failure"


# A job in one of these is still open; detection will not create a duplicate
OPEN_RECONCILIATION_STATUSES = [
    ReconciliationStatus.pending.value,
    ReconciliationStatus.processing.value,
]

FINAL_JOB_RUN_STATUSES = [
    JobRunStatus.completed.value,
    JobRunStatus.failed.value,
    JobRunStatus.locked.value,
]
