from .job_run_schemas import (
    JobRunResponse,
    JobRunSummary,
    BatchResult,
    JobHealth,
    LockState,
)
from .notification_schemas import (
    NotificationJobResponse,
    AvailabilityRequestInfo,
    Coordinator,
)
from .webhook_schemas import (
    WebhookAck,
    WebhookEventResponse,
    ReconciliationJobResponse,
)

__all__ = [
    "JobRunResponse",
    "JobRunSummary",
    "BatchResult",
    "JobHealth",
    "LockState",
    "NotificationJobResponse",
    "AvailabilityRequestInfo",
    "Coordinator",
    "WebhookAck",
    "WebhookEventResponse",
    "ReconciliationJobResponse",
]
