"""
Base class for periodic batch workers
Each worker claims a bounded batch from its own table and records per-item outcomes
"""
import socket
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sched_core.core.backoff import RetryPolicy, retry_bookkeeping
from sched_core.core.clock import Clock, utc_now
from sched_core.core.config import Settings
from sched_core.core.logger import warning
from sched_core.core.setup_logger import worker_logger
from sched_core.db import database
from sched_core.schemas.job_run_schemas import BatchResult


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class BaseBatchWorker(ABC):
    job_name: str = None

    def __init__(
            self,
            settings: Settings,
            session_factory: Optional[async_sessionmaker] = None,
            clock: Clock = utc_now,
            instance_id: Optional[str] = None,
            rng=None,
    ):
        self.settings = settings
        self._session_factory = session_factory
        self.clock = clock
        self.instance_id = instance_id or default_instance_id()
        self.rng = rng

    async def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = await database.get_session_factory()
        return self._session_factory

    def stale_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.settings.CLAIM_STALE_SECONDS)

    def claim_extra(self) -> Optional[Dict[str, Any]]:
        return None

    async def claim_due(self, db: AsyncSession, result: BatchResult) -> List[Tuple[str, datetime, bool]]:
        """
        Claim up to BATCH_SIZE due items from self.repo and commit the claims.

        Returns:
            (item id, claim token, stale) for every claim won. A stale item was
            left claimed by a worker that died or overran its deadline; the
            caller books that lost run as a failed attempt instead of processing it.
        """
        now = self.clock()
        due = await self.repo.find_due(
            db,
            now=now,
            stale_before=self.stale_cutoff(now),
            limit=self.settings.BATCH_SIZE,
        )

        claimed = []
        for item in due:
            stale = item.status == self.repo.claimed_status
            previous_claim = item.claimed_at
            if not await self.repo.claim(db, item, now=now, extra=self.claim_extra()):
                # Another instance got there first
                result.skipped += 1
                continue
            if stale:
                warning(worker_logger, "Reclaimed stale item", context={
                    "job_name": self.job_name,
                    "id": item.id,
                    "previous_claim": previous_claim.isoformat() if previous_claim else None,
                    "attempts": item.attempts,
                })
            claimed.append((item.id, now, stale))

        await db.commit()
        return claimed

    def retry_policy(self, max_attempts: int) -> RetryPolicy:
        return RetryPolicy.from_settings(self.settings, max_attempts=max_attempts, rng=self.rng)

    def failure_values(self, item, exc: BaseException, now: datetime) -> Tuple[Dict[str, Any], bool, str]:
        """
        Bookkeeping for a failed item.

        Returns:
            (values to write, terminal?, error class)
        """
        return retry_bookkeeping(item, exc, now, self.retry_policy(item.max_attempts))

    @abstractmethod
    async def queue_depth(self, db: AsyncSession) -> int:
        pass

    @abstractmethod
    async def process_batch(self) -> BatchResult:
        """
        Claim and process up to BATCH_SIZE due items. Per-item failures are
        recorded and counted; only infrastructure errors propagate.
        """
        pass

    async def close(self) -> None:
        return None
