import asyncio

import pytest

from sched_core.core.errors import PermanentError
from sched_core.schemas.job_run_schemas import BatchResult
from sched_core.services.job_run_service import JobRunService
from sched_core.services.lock_service import LockService
from sched_core.services.notification_service import NotificationService
from sched_core.workers.base_worker import BaseBatchWorker
from sched_core.workers.notify_worker import NotifyWorker
from sched_core.workers.periodic import PeriodicWorker
from sched_core.workers.runner import JobRunner, build_worker

from conftest import RecordingTransport


class StubWorker(BaseBatchWorker):
    job_name = "notify"

    def __init__(self, settings, result=None, error=None, delay=0.0, **kwargs):
        super().__init__(settings, **kwargs)
        self.result = result or BatchResult()
        self.error = error
        self.delay = delay
        self.calls = 0
        self.closed = False

    async def queue_depth(self, db):
        return 3

    async def process_batch(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result

    async def close(self):
        self.closed = True


def build_runner(settings, session_factory, clock, worker=None):
    workers = {"notify": worker} if worker else None
    return JobRunner(settings, session_factory=session_factory, clock=clock, instance_id="runner-1", workers=workers)


@pytest.mark.asyncio
async def test_run_processes_batch_and_records_run(settings, session_factory, clock, make_request, make_booking, db):
    request = await make_request()
    booking = await make_booking(request)
    async with session_factory() as session:
        await NotificationService(settings, clock=clock).enqueue_booking_confirmation(session, request, booking)
        await session.commit()

    transport = RecordingTransport()
    worker = NotifyWorker(settings, transport=transport, session_factory=session_factory, clock=clock, instance_id="runner-1")
    runner = build_runner(settings, session_factory, clock, worker)

    summary = await runner.run("notify", triggered_by="scheduler")

    assert summary.success
    assert summary.status == "completed"
    assert (summary.processed, summary.failed) == (1, 0)
    assert summary.queue_depth_before == 1
    assert summary.queue_depth_after == 0
    assert len(transport.sent) == 1

    run = await JobRunService(settings).repo.get(db, summary.run_id)
    assert run.status == "completed"
    assert run.triggered_by == "scheduler"
    assert run.instance_id == "runner-1"
    assert not await LockService(settings, clock=clock).is_held(db, "notify")


@pytest.mark.asyncio
async def test_contended_lock_records_locked_run(settings, session_factory, clock, db):
    locks = LockService(settings, clock=clock)
    assert await locks.acquire(db, "notify", "other-instance")

    worker = StubWorker(settings)
    summary = await build_runner(settings, session_factory, clock, worker).run("notify")

    assert summary.success
    assert summary.status == "locked"
    assert worker.calls == 0
    run = await JobRunService(settings).repo.get(db, summary.run_id)
    assert run.status == "locked"
    # The other instance keeps its lock
    assert (await locks.get_holder(db, "notify")).holder_id == "other-instance"


@pytest.mark.asyncio
async def test_all_items_failed_marks_run_failed(settings, session_factory, clock, db):
    result = BatchResult(failed=2, errors=[{"id": "a", "error": "x"}, {"id": "b", "error": "y"}])
    summary = await build_runner(settings, session_factory, clock, StubWorker(settings, result=result)).run("notify")

    assert not summary.success
    assert summary.status == "failed"
    run = await JobRunService(settings).repo.get(db, summary.run_id)
    assert run.error_summary == "2 errors"
    assert len(run.error_details) == 2


@pytest.mark.asyncio
async def test_partial_failure_still_completes(settings, session_factory, clock):
    result = BatchResult(processed=3, failed=1, errors=[{"id": "a", "error": "x"}])
    summary = await build_runner(settings, session_factory, clock, StubWorker(settings, result=result)).run("notify")

    assert summary.status == "completed"
    assert summary.message == "1 errors"


@pytest.mark.asyncio
async def test_crash_fails_run_and_releases_lock(settings, session_factory, clock, db):
    worker = StubWorker(settings, error=RuntimeError("database went away"))
    summary = await build_runner(settings, session_factory, clock, worker).run("notify")

    assert summary.status == "failed"
    assert "database went away" in summary.message
    assert not await LockService(settings, clock=clock).is_held(db, "notify")


@pytest.mark.asyncio
async def test_run_is_bounded_by_lock_ttl(settings, session_factory, clock):
    settings.LOCK_TTL_OVERRIDES = {"notify": 1}
    worker = StubWorker(settings, delay=5)

    summary = await build_runner(settings, session_factory, clock, worker).run("notify")

    assert summary.status == "failed"
    assert "deadline" in summary.message


def test_unknown_job_is_rejected(settings):
    with pytest.raises(ValueError):
        build_worker("capacity", settings)


@pytest.mark.asyncio
async def test_periodic_run_once_records_cli_runs(settings, session_factory, clock, db):
    worker = StubWorker(settings, result=BatchResult(processed=1))
    periodic = PeriodicWorker(build_runner(settings, session_factory, clock, worker), job_names=["notify"])

    assert await periodic.run_once()
    assert periodic.items_processed == 1

    runs = await JobRunService(settings).get_by_job_name(db, "notify")
    assert [run.triggered_by for run in runs] == ["cli"]

    await periodic.runner.close()
    assert worker.closed


@pytest.mark.asyncio
async def test_periodic_idle_cycle_reports_no_work(settings, session_factory, clock):
    periodic = PeriodicWorker(build_runner(settings, session_factory, clock, StubWorker(settings)), job_names=["notify"])
    assert not await periodic.run_once()
