"""
Notification Worker
Claims due notification jobs, renders them and dispatches them through the mail transport
"""
import asyncio
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import JobName
from sched_core.constants.queue_status import NotificationStatus, AttemptStatus
from sched_core.core.errors import ClaimExpiredError, describe_error, TRANSIENT
from sched_core.core.logger import info, debug, warning, error
from sched_core.core.setup_logger import worker_logger
from sched_core.integrations.email_transport import EmailTransport, OutboundEmail, build_email_transport
from sched_core.integrations.renderer import NotificationRenderer, PlainTextRenderer
from sched_core.models.notification_job import NotificationJob
from sched_core.repositories.notification_repository import NotificationRepository, NotificationAttemptRepository
from sched_core.schemas.job_run_schemas import BatchResult
from sched_core.schemas.notification_payloads import parse_payload
from sched_core.workers.base_worker import BaseBatchWorker


class NotifyWorker(BaseBatchWorker):
    job_name = JobName.notify.value

    def __init__(
            self,
            settings,
            transport: EmailTransport = None,
            renderer: NotificationRenderer = None,
            repo: NotificationRepository = None,
            attempt_repo: NotificationAttemptRepository = None,
            **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.transport = transport or build_email_transport(settings)
        self.renderer = renderer or PlainTextRenderer()
        self.repo = repo or NotificationRepository()
        self.attempt_repo = attempt_repo or NotificationAttemptRepository()

    async def queue_depth(self, db: AsyncSession) -> int:
        return await self.repo.count_pending(db)

    def claim_extra(self):
        return {"claimed_by": self.instance_id}

    async def process_batch(self) -> BatchResult:
        result = BatchResult()
        factory = await self.session_factory()

        async with factory() as db:
            claimed = await self.claim_due(db, result)

            if not claimed:
                debug(worker_logger, "No notification jobs due")
                return result

            info(worker_logger, "Notification jobs claimed", context={
                "count": len(claimed),
                "instance_id": self.instance_id,
            })

            for job_id, claimed_at, stale in claimed:
                try:
                    if stale:
                        outcome, err = await self._expire_claim(db, job_id, claimed_at)
                    else:
                        outcome, err = await self._process_job(db, job_id, claimed_at)
                except Exception as e:
                    await db.rollback()
                    error(worker_logger, "Unexpected error processing notification", context={
                        "job_id": job_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    })
                    outcome, err = "failed", describe_error(e)

                if outcome == "sent":
                    result.processed += 1
                elif outcome == "skipped":
                    result.skipped += 1
                else:
                    result.failed += 1
                    result.errors.append({"id": job_id, "error": err})

        return result

    async def _process_job(self, db: AsyncSession, job_id: str, claimed_at: datetime) -> Tuple[str, Optional[str]]:
        job = await self.repo.get(db, job_id)
        if job is None:
            return "skipped", None

        attempt_number = (job.attempts or 0) + 1
        start_time = self.clock()

        try:
            payload = parse_payload(job.payload)
            rendered = self.renderer.render(payload)
            message = OutboundEmail(to=job.to_email, subject=rendered.subject, text=rendered.text, html=rendered.html)
            message_id = await asyncio.wait_for(
                self.transport.send(message),
                timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
            )
        except Exception as e:
            return await self._handle_failure(db, job, claimed_at, e, attempt_number)

        now = self.clock()
        await self.attempt_repo.record(
            db,
            job_id=job.id,
            attempt_number=attempt_number,
            status=AttemptStatus.success.value,
            provider_message_id=message_id or None,
        )
        won = await self.repo.finish_claimed(db, item_id=job.id, claimed_at=claimed_at, values={
            "status": NotificationStatus.sent.value,
            "sent_at": now,
            "attempts": attempt_number,
            "last_error": None,
        })
        await db.commit()

        if not won:
            warning(worker_logger, "Notification sent but claim was lost", context={"job_id": job.id})
            return "skipped", None

        info(worker_logger, "Notification sent", context={
            "job_id": job.id,
            "type": job.type,
            "attempts": attempt_number,
            "duration_seconds": round((now - start_time).total_seconds(), 2),
        })
        return "sent", None

    async def _expire_claim(self, db: AsyncSession, job_id: str, claimed_at: datetime) -> Tuple[str, Optional[str]]:
        """The previous run never finished this job; book it as a failed attempt"""
        job = await self.repo.get(db, job_id)
        if job is None:
            return "skipped", None
        return await self._handle_failure(db, job, claimed_at, ClaimExpiredError(), (job.attempts or 0) + 1)

    async def _handle_failure(
            self,
            db: AsyncSession,
            job: NotificationJob,
            claimed_at: datetime,
            exc: BaseException,
            attempt_number: int,
    ) -> Tuple[str, Optional[str]]:
        now = self.clock()
        values, terminal, kind = self.failure_values(job, exc, now)
        values["status"] = NotificationStatus.failed.value if terminal else NotificationStatus.pending.value

        await self.attempt_repo.record(
            db,
            job_id=job.id,
            attempt_number=attempt_number,
            status=AttemptStatus.failure.value,
            error=values["last_error"],
            retryable=kind == TRANSIENT,
        )
        won = await self.repo.finish_claimed(db, item_id=job.id, claimed_at=claimed_at, values=values)
        await db.commit()

        error(worker_logger, "Notification failed" if terminal else "Notification failed, will retry", context={
            "job_id": job.id,
            "type": job.type,
            "error": values["last_error"],
            "error_class": kind,
            "attempts": values["attempts"],
            "max_attempts": job.max_attempts,
            "run_after": values["run_after"].isoformat() if "run_after" in values else None,
        })
        if not won:
            return "skipped", None
        return "failed", values["last_error"]

    async def close(self) -> None:
        await self.transport.close()
