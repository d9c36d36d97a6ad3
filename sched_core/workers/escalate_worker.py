"""
Escalation Worker
Tells the coordinator about scheduling requests the candidate never answered
"""
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import JobName
from sched_core.core.clock import ensure_utc
from sched_core.core.errors import describe_error
from sched_core.core.logger import info, debug, error
from sched_core.core.setup_logger import worker_logger
from sched_core.models.scheduling import SchedulingRequest
from sched_core.repositories.scheduling_repository import SchedulingRequestRepository
from sched_core.schemas.job_run_schemas import BatchResult
from sched_core.schemas.notification_schemas import Coordinator
from sched_core.services.notification_service import NotificationService
from sched_core.workers.base_worker import BaseBatchWorker


def coordinator_for(request: SchedulingRequest) -> Coordinator:
    """The organizer owns the request; created_by is their user id when known"""
    email = request.organizer_email
    return Coordinator(
        user_id=request.created_by or email,
        email=email,
        name=email.split("@")[0],
    )


class EscalationWorker(BaseBatchWorker):
    job_name = JobName.escalate.value

    def __init__(
            self,
            settings,
            notifications: NotificationService = None,
            request_repo: SchedulingRequestRepository = None,
            **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.notifications = notifications or NotificationService(settings, clock=self.clock)
        self.request_repo = request_repo or SchedulingRequestRepository()

    def _thresholds(self, now: datetime) -> dict:
        return {
            "now": now,
            "no_response_before": now - timedelta(hours=self.settings.ESCALATION_NO_RESPONSE_HOURS),
            "repeat_before": now - timedelta(hours=self.settings.ESCALATION_REPEAT_HOURS),
        }

    async def queue_depth(self, db: AsyncSession) -> int:
        return await self.request_repo.count_escalation_due(db, **self._thresholds(self.clock()))

    async def process_batch(self) -> BatchResult:
        result = BatchResult()
        factory = await self.session_factory()
        now = self.clock()

        async with factory() as db:
            due = await self.request_repo.get_escalation_due(
                db,
                limit=self.settings.ESCALATION_SCAN_LIMIT,
                **self._thresholds(now),
            )
            if not due:
                debug(worker_logger, "No requests to escalate")
                return result

            request_ids = [request.id for request in due]
            for request_id in request_ids:
                try:
                    sent = await self._escalate(db, request_id, now)
                except Exception as e:
                    await db.rollback()
                    error(worker_logger, "Failed to escalate scheduling request", context={
                        "request_id": request_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    })
                    result.failed += 1
                    result.errors.append({"id": request_id, "error": describe_error(e)})
                    continue

                if sent:
                    result.processed += 1
                else:
                    result.skipped += 1

        return result

    async def _escalate(self, db: AsyncSession, request_id: str, now: datetime) -> bool:
        """
        Enqueue the escalation for one request and stamp it.

        Returns:
            False when the coordinator's preferences suppressed the notice
        """
        request = await self.request_repo.get(db, request_id)
        is_expired = ensure_utc(request.expires_at) < now
        days = int((now - ensure_utc(request.created_at)).total_seconds() // 86400)

        job = await self.notifications.enqueue_escalation(
            db,
            request,
            "booking",
            coordinator_for(request),
            days_since_request=days,
            is_expired=is_expired,
        )
        # Stamped even when suppressed so the request waits out the repeat window
        request.last_escalated_at = now
        await db.commit()

        info(worker_logger, "Scheduling request escalated", context={
            "request_id": request_id,
            "expired": is_expired,
            "days_since_request": days,
            "job_id": job.id if job is not None else None,
        })
        return job is not None
