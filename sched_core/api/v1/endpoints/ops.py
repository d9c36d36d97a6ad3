from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.api.deps import (
    get_job_run_service,
    get_lock_service,
    get_notification_service,
    get_reconciliation_repo,
    get_runner,
    verify_cron_secret,
)
from sched_core.constants.job_types import EntityType
from sched_core.db import get_db
from sched_core.repositories.reconciliation_repository import ReconciliationRepository
from sched_core.schemas.job_run_schemas import JobHealth, JobRunResponse, LockState
from sched_core.schemas.notification_schemas import NotificationJobResponse
from sched_core.schemas.webhook_schemas import ReconciliationJobResponse
from sched_core.services.job_run_service import JobRunService
from sched_core.services.lock_service import LockService
from sched_core.services.notification_service import NotificationService
from sched_core.workers.runner import JobRunner, WORKERS

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.get("/jobs", response_model=List[JobHealth])
async def job_health(
        db: AsyncSession = Depends(get_db),
        job_runner: JobRunner = Depends(get_runner),
        job_runs: JobRunService = Depends(get_job_run_service),
        locks: LockService = Depends(get_lock_service),
):
    health = []
    for job_name in WORKERS:
        last_run = await job_runs.get_latest(db, job_name)
        holder = await locks.get_holder(db, job_name)
        health.append(JobHealth(
            job_name=job_name,
            last_run=JobRunResponse.model_validate(last_run) if last_run else None,
            queue_depth=await job_runner.get_worker(job_name).queue_depth(db),
            failure_rate_24h=await job_runs.failure_rate_24h(db, job_name),
            lock=LockState(
                held=holder is not None,
                holder_id=holder.holder_id if holder else None,
                expires_at=holder.expires_at if holder else None,
            ),
        ))
    return health


@router.get("/job-runs", response_model=List[JobRunResponse])
async def list_job_runs(
        job_name: Optional[str] = Query(None, description="Filter by job name"),
        limit: int = Query(50, ge=1, le=500, description="Maximum runs to return"),
        db: AsyncSession = Depends(get_db),
        job_runs: JobRunService = Depends(get_job_run_service),
):
    if job_name:
        return await job_runs.get_by_job_name(db, job_name, limit=limit)
    return await job_runs.get_recent(db, limit=limit)


@router.post("/notifications/{job_id}/retry", response_model=NotificationJobResponse)
async def retry_notification(
        job_id: str,
        reset_attempts: bool = Query(False, description="Reset attempt count to 0"),
        db: AsyncSession = Depends(get_db),
        svc: NotificationService = Depends(get_notification_service),
):
    job = await svc.requeue_failed(db, job_id, reset_attempts=reset_attempts)
    if job is None:
        raise HTTPException(status_code=404, detail=f"No failed notification job with id '{job_id}'")
    return job


@router.get("/reconciliation/attention", response_model=List[ReconciliationJobResponse])
async def reconciliation_attention(
        limit: int = Query(100, ge=1, le=500),
        db: AsyncSession = Depends(get_db),
        repo: ReconciliationRepository = Depends(get_reconciliation_repo),
):
    return await repo.get_requiring_attention(db, limit=limit)


@router.get("/notifications", response_model=List[NotificationJobResponse])
async def list_notifications(
        entity_type: EntityType = Query(..., description="booking, scheduling_request or availability_request"),
        entity_id: str = Query(...),
        db: AsyncSession = Depends(get_db),
        svc: NotificationService = Depends(get_notification_service),
):
    return await svc.get_for_entity(db, entity_type.value, entity_id)
