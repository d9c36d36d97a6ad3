"""
Base handler class for webhook event handlers
Provides common functionality and interface
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.core.setup_logger import worker_logger
from sched_core.models.webhook_event import WebhookEvent
from sched_core.repositories.scheduling_repository import SchedulingRequestRepository, BookingRepository


class BaseWebhookHandler(ABC):
    """
    Base class for all webhook handlers
    Handlers write through the session they are given; the worker commits
    on success and rolls back on failure.
    """

    def __init__(
            self,
            request_repo: SchedulingRequestRepository = None,
            booking_repo: BookingRepository = None,
    ):
        self.logger = worker_logger
        self.request_repo = request_repo or SchedulingRequestRepository()
        self.booking_repo = booking_repo or BookingRepository()

    @staticmethod
    def data(event: WebhookEvent) -> Dict[str, Any]:
        payload = event.payload or {}
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    @abstractmethod
    async def execute(self, db: AsyncSession, event: WebhookEvent) -> Dict[str, Any]:
        """
        Apply the event to local scheduling state

        Args:
            db: Database session
            event: Claimed webhook event

        Returns:
            Result dictionary (logged and stored in the audit trail)
        """
        pass

    async def related_request_ids(self, db: AsyncSession, event: WebhookEvent) -> List[str]:
        """Scheduling requests to flag when the event fails for good"""
        application_id = self.data(event).get("applicationId")
        if not application_id:
            return []
        requests = await self.request_repo.get_by_application_id(db, str(application_id))
        return [request.id for request in requests]

    @property
    @abstractmethod
    def event_types(self) -> List[str]:
        """Return the event types this handler processes"""
        pass
