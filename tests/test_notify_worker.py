import asyncio
from datetime import timedelta

import pytest

from sched_core.core.errors import PermanentError, TransientError
from sched_core.repositories.notification_repository import NotificationAttemptRepository
from sched_core.services.notification_service import NotificationService
from sched_core.workers.notify_worker import NotifyWorker

from conftest import RecordingTransport


@pytest.fixture
def notifications(settings, clock):
    return NotificationService(settings, clock=clock)


def build_worker(settings, session_factory, clock, transport):
    return NotifyWorker(
        settings,
        transport=transport,
        session_factory=session_factory,
        clock=clock,
        instance_id="test-instance",
        rng=lambda: 0.0,
    )


async def enqueue_confirmation(notifications, session_factory, make_request, make_booking):
    request = await make_request()
    booking = await make_booking(request)
    async with session_factory() as session:
        job = await notifications.enqueue_booking_confirmation(session, request, booking)
        await session.commit()
    return job


@pytest.mark.asyncio
async def test_due_job_is_sent(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    transport = RecordingTransport()

    result = await build_worker(settings, session_factory, clock, transport).process_batch()

    assert (result.processed, result.failed, result.skipped) == (1, 0, 0)
    assert transport.sent[0].to == "jordan@example.com"
    assert "Backend Engineer" in transport.sent[0].subject

    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "SENT"
    assert stored.sent_at == clock()
    assert stored.attempts == 1

    attempts = await NotificationAttemptRepository().get_for_job(db, job.id)
    assert [a.status for a in attempts] == ["success"]
    assert attempts[0].provider_message_id == "msg-1"


@pytest.mark.asyncio
async def test_future_jobs_are_not_claimed(settings, session_factory, clock, notifications, make_request, make_booking):
    request = await make_request()
    booking = await make_booking(request)
    async with session_factory() as session:
        await notifications.enqueue_reminders(session, request, booking)
        await session.commit()

    transport = RecordingTransport()
    result = await build_worker(settings, session_factory, clock, transport).process_batch()

    assert result.processed == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_permanent_failure_is_terminal(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    transport = RecordingTransport(errors=[PermanentError("invalid recipient")])

    result = await build_worker(settings, session_factory, clock, transport).process_batch()

    assert (result.processed, result.failed) == (0, 1)
    assert "invalid recipient" in result.errors[0]["error"]

    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "FAILED"
    assert stored.attempts == 1
    attempts = await NotificationAttemptRepository().get_for_job(db, job.id)
    assert attempts[0].retryable is False


@pytest.mark.asyncio
async def test_transient_failures_back_off_until_ceiling(settings, session_factory, clock, notifications, make_request, make_booking, db):
    settings.NOTIFICATION_MAX_ATTEMPTS = 3
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    transport = RecordingTransport(errors=[TransientError("503")] * 3)
    worker = build_worker(settings, session_factory, clock, transport)

    result = await worker.process_batch()
    assert result.failed == 1
    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "PENDING"
    assert stored.attempts == 1
    assert stored.run_after == clock() + timedelta(seconds=settings.BACKOFF_BASE_SECONDS)

    # Not due again until the backoff elapses
    assert (await worker.process_batch()).failed == 0

    clock.now = stored.run_after
    await worker.process_batch()
    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "PENDING"
    assert stored.attempts == 2
    assert stored.run_after == clock() + timedelta(seconds=settings.BACKOFF_BASE_SECONDS * 2)

    clock.now = stored.run_after
    await worker.process_batch()
    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "FAILED"
    assert stored.attempts == 3
    assert "503" in stored.last_error

    assert len(await NotificationAttemptRepository().get_for_job(db, job.id)) == 3
    assert transport.sent == []


@pytest.mark.asyncio
async def test_malformed_payload_fails_without_retry(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    async with session_factory() as session:
        await notifications.repo.compare_and_set(session, id=job.id, expected={}, values={"payload": {"kind": "unknown"}})
        await session.commit()

    transport = RecordingTransport()
    result = await build_worker(settings, session_factory, clock, transport).process_batch()

    assert result.failed == 1
    assert (await notifications.repo.get(db, job.id)).status == "FAILED"
    assert transport.sent == []


@pytest.mark.asyncio
async def test_stale_claim_is_reclaimed(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    async with session_factory() as session:
        stored = await notifications.repo.get(session, job.id)
        assert await notifications.repo.claim(session, stored, now=clock(), extra={"claimed_by": "dead-instance"})
        await session.commit()

    transport = RecordingTransport()
    worker = build_worker(settings, session_factory, clock, transport)

    # Still within the claim window: left alone
    assert (await worker.process_batch()).processed == 0

    # The dead run counts as a failed attempt and the job backs off
    clock.advance(seconds=settings.CLAIM_STALE_SECONDS + 1)
    result = await worker.process_batch()
    assert (result.processed, result.failed) == (0, 1)
    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "PENDING"
    assert stored.attempts == 1
    assert "claim expired" in stored.last_error
    assert stored.run_after > clock()
    assert transport.sent == []

    clock.now = stored.run_after
    assert (await worker.process_batch()).processed == 1
    stored = await notifications.repo.get(db, job.id)
    assert stored.claimed_by == "test-instance"
    assert stored.attempts == 2


class HangingTransport(RecordingTransport):
    def __init__(self):
        super().__init__()
        self.calls = 0

    async def send(self, message) -> str:
        self.calls += 1
        await asyncio.sleep(3600)
        return "never"


@pytest.mark.asyncio
async def test_runs_cut_off_mid_send_exhaust_the_retry_ceiling(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    transport = HangingTransport()
    worker = build_worker(settings, session_factory, clock, transport)

    for _ in range(3 * settings.NOTIFICATION_MAX_ATTEMPTS):
        try:
            await asyncio.wait_for(worker.process_batch(), timeout=0.05)
        except asyncio.TimeoutError:
            pass
        clock.advance(seconds=settings.CLAIM_STALE_SECONDS + settings.BACKOFF_CAP_SECONDS + 1)

    stored = await notifications.repo.get(db, job.id)
    assert stored.status == "FAILED"
    assert stored.attempts == stored.max_attempts
    assert transport.calls == stored.max_attempts


@pytest.mark.asyncio
async def test_requeue_failed_job(settings, session_factory, clock, notifications, make_request, make_booking, db):
    job = await enqueue_confirmation(notifications, session_factory, make_request, make_booking)
    await build_worker(settings, session_factory, clock, RecordingTransport(errors=[PermanentError("bounced")])).process_batch()

    requeued = await notifications.requeue_failed(db, job.id, reset_attempts=True)
    await db.commit()
    assert requeued.status == "PENDING"
    assert requeued.attempts == 0

    # Only failed jobs can be requeued
    assert await notifications.requeue_failed(db, job.id) is None

    transport = RecordingTransport()
    assert (await build_worker(settings, session_factory, clock, transport).process_batch()).processed == 1
