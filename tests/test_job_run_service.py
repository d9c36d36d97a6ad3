from datetime import timedelta

import pytest

from sched_core.services.job_run_service import JobRunService


@pytest.fixture
def job_runs(settings, clock):
    return JobRunService(settings, clock=clock)


@pytest.mark.asyncio
async def test_start_and_finish_records_counters(job_runs, db, clock):
    run = await job_runs.start(db, job_name="notify", triggered_by="scheduler", queue_depth_before=4, instance_id="i-1")
    assert run.status == "running"

    clock.advance(seconds=2)
    assert await job_runs.finish(db, run, status="completed", processed=3, failed=1, skipped=0, queue_depth_after=0)

    stored = await job_runs.repo.get(db, run.id)
    assert stored.status == "completed"
    assert stored.processed == 3
    assert stored.failed == 1
    assert stored.duration_ms == 2000
    assert stored.queue_depth_before == 4
    assert stored.queue_depth_after == 0
    assert stored.finished_at == clock()


@pytest.mark.asyncio
async def test_finish_is_one_way(job_runs, db):
    run = await job_runs.start(db, job_name="notify", triggered_by="manual", queue_depth_before=0, instance_id="i-1")
    assert await job_runs.finish(db, run, status="completed")
    assert not await job_runs.finish(db, run, status="failed", error_summary="late")

    stored = await job_runs.repo.get(db, run.id)
    assert stored.status == "completed"
    assert stored.error_summary is None


@pytest.mark.asyncio
async def test_locked_run_is_recorded_final(job_runs, db):
    run = await job_runs.record_locked(db, job_name="webhook", triggered_by="scheduler", instance_id="i-2", queue_depth=7)

    stored = await job_runs.repo.get(db, run.id)
    assert stored.status == "locked"
    assert stored.finished_at is not None
    assert stored.error_summary == "Lock held by another instance"


@pytest.mark.asyncio
async def test_stale_running_runs_are_expired(job_runs, db, clock, settings):
    run = await job_runs.start(db, job_name="reconcile", triggered_by="cli", queue_depth_before=0, instance_id="i-3")

    clock.advance(seconds=settings.JOB_RUN_STALE_SECONDS - 1)
    assert await job_runs.expire_stale_runs(db, "reconcile") == 0

    clock.advance(seconds=2)
    assert await job_runs.expire_stale_runs(db, "reconcile") == 1

    stored = await job_runs.repo.get(db, run.id)
    assert stored.status == "failed"
    assert "crash timeout" in stored.error_summary


@pytest.mark.asyncio
async def test_failure_rate_over_last_day(job_runs, db, clock):
    assert await job_runs.failure_rate_24h(db, "notify") == 0.0

    for status in ("completed", "completed", "failed", "locked"):
        run = await job_runs.start(db, job_name="notify", triggered_by="scheduler", queue_depth_before=0, instance_id="i")
        await job_runs.finish(db, run, status=status)

    assert await job_runs.failure_rate_24h(db, "notify") == pytest.approx(0.25)

    clock.advance(hours=25)
    assert await job_runs.failure_rate_24h(db, "notify") == 0.0
