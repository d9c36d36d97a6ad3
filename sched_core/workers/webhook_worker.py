"""
Webhook Processor
Claims verified webhook events and dispatches them to the handler registered
for their event type
"""
import asyncio
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import JobName, AuditAction
from sched_core.constants.queue_status import WebhookStatus
from sched_core.core.errors import ClaimExpiredError, describe_error
from sched_core.core.logger import info, debug, warning, error
from sched_core.core.setup_logger import worker_logger
from sched_core.models.webhook_event import WebhookEvent
from sched_core.repositories.audit_repository import AuditRepository
from sched_core.repositories.scheduling_repository import SchedulingRequestRepository
from sched_core.repositories.webhook_repository import WebhookRepository
from sched_core.schemas.job_run_schemas import BatchResult
from sched_core.workers.base_worker import BaseBatchWorker
from sched_core.workers.webhook_handlers import get_handler


class WebhookWorker(BaseBatchWorker):
    job_name = JobName.webhook.value

    def __init__(
            self,
            settings,
            repo: WebhookRepository = None,
            audit_repo: AuditRepository = None,
            request_repo: SchedulingRequestRepository = None,
            handler_lookup=get_handler,
            **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.repo = repo or WebhookRepository()
        self.audit_repo = audit_repo or AuditRepository()
        self.request_repo = request_repo or SchedulingRequestRepository()
        self.handler_lookup = handler_lookup

    async def queue_depth(self, db: AsyncSession) -> int:
        return await self.repo.count_pending(db)

    async def process_batch(self) -> BatchResult:
        result = BatchResult()
        factory = await self.session_factory()

        async with factory() as db:
            claimed = await self.claim_due(db, result)

            if not claimed:
                debug(worker_logger, "No webhook events due")
                return result

            info(worker_logger, "Webhook events claimed", context={
                "count": len(claimed),
                "instance_id": self.instance_id,
            })

            for event_id, claimed_at, stale in claimed:
                try:
                    if stale:
                        outcome, err = await self._expire_claim(db, event_id, claimed_at)
                    else:
                        outcome, err = await self._process_event(db, event_id, claimed_at)
                except Exception as e:
                    await db.rollback()
                    error(worker_logger, "Unexpected error processing webhook", context={
                        "webhook_id": event_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    })
                    outcome, err = "failed", describe_error(e)

                if outcome == "processed":
                    result.processed += 1
                elif outcome == "skipped":
                    result.skipped += 1
                else:
                    result.failed += 1
                    result.errors.append({"id": event_id, "error": err})

        return result

    async def _process_event(self, db: AsyncSession, event_id: str, claimed_at: datetime) -> Tuple[str, Optional[str]]:
        event = await self.repo.get(db, event_id)
        if event is None:
            return "skipped", None

        handler = self.handler_lookup(event.event_type)
        handler_result = None

        if handler is None:
            warning(worker_logger, "No handler for webhook event type, marking processed", context={
                "webhook_id": event.id,
                "event_type": event.event_type,
            })
        else:
            try:
                handler_result = await asyncio.wait_for(
                    handler.execute(db, event),
                    timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
                )
            except Exception as e:
                # Discard whatever the handler wrote before failing
                await db.rollback()
                return await self._handle_failure(db, event_id, claimed_at, handler, e)

        now = self.clock()
        won = await self.repo.finish_claimed(db, item_id=event.id, claimed_at=claimed_at, values={
            "status": WebhookStatus.processed.value,
            "processed_at": now,
            "attempts": (event.attempts or 0) + 1,
            "last_error": None,
        })
        if not won:
            await db.rollback()
            warning(worker_logger, "Webhook claim lost before completion", context={"webhook_id": event_id})
            return "skipped", None

        await self.audit_repo.log(db, action=AuditAction.webhook_processed.value, payload={
            "webhook_id": event.id,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "result": handler_result or {"handled": False},
        })
        await db.commit()

        info(worker_logger, "Webhook processed", context={
            "webhook_id": event.id,
            "event_type": event.event_type,
        })
        return "processed", None

    async def _expire_claim(self, db: AsyncSession, event_id: str, claimed_at: datetime) -> Tuple[str, Optional[str]]:
        event = await self.repo.get(db, event_id)
        if event is None:
            return "skipped", None
        handler = self.handler_lookup(event.event_type)
        return await self._handle_failure(db, event_id, claimed_at, handler, ClaimExpiredError())

    async def _handle_failure(
            self,
            db: AsyncSession,
            event_id: str,
            claimed_at: datetime,
            handler,
            exc: BaseException,
    ) -> Tuple[str, Optional[str]]:
        event: WebhookEvent = await self.repo.get(db, event_id)
        now = self.clock()
        values, terminal, kind = self.failure_values(event, exc, now)
        values["status"] = WebhookStatus.failed.value if terminal else WebhookStatus.received.value

        won = await self.repo.finish_claimed(db, item_id=event.id, claimed_at=claimed_at, values=values)
        if not won:
            await db.rollback()
            return "skipped", None

        if terminal:
            await self.audit_repo.log(db, action=AuditAction.webhook_failed.value, payload={
                "webhook_id": event.id,
                "event_id": event.event_id,
                "event_type": event.event_type,
                "error": values["last_error"],
                "error_class": kind,
                "attempts": values["attempts"],
            })
            if handler is not None:
                await self._flag_related(db, event, handler, values["last_error"])

        await db.commit()

        error(worker_logger, "Webhook failed" if terminal else "Webhook failed, will retry", context={
            "webhook_id": event.id,
            "event_type": event.event_type,
            "error": values["last_error"],
            "error_class": kind,
            "attempts": values["attempts"],
            "max_attempts": event.max_attempts,
        })
        return "failed", values["last_error"]

    async def _flag_related(self, db: AsyncSession, event: WebhookEvent, handler, last_error: str) -> None:
        request_ids = await handler.related_request_ids(db, event)
        reason = f"Webhook {event.event_type} failed: {last_error}"[:500]
        for request_id in request_ids:
            if await self.request_repo.flag_attention(db, request_id=request_id, reason=reason):
                await self.audit_repo.log(
                    db,
                    action=AuditAction.needs_attention_set.value,
                    request_id=request_id,
                    payload={"source": "webhook", "webhook_id": event.id, "reason": reason},
                )
