import json

import pytest
from fastapi import HTTPException

from sched_core.core.errors import TransientError
from sched_core.repositories.audit_repository import AuditRepository
from sched_core.repositories.scheduling_repository import SchedulingRequestRepository
from sched_core.services.webhook_service import WebhookService, compute_signature, payload_hash
from sched_core.workers.webhook_handlers import ApplicationHandler, BaseWebhookHandler, get_handler
from sched_core.workers.webhook_worker import WebhookWorker


def signed(settings, body: dict):
    raw = json.dumps(body).encode("utf-8")
    return raw, compute_signature(settings.WEBHOOK_SECRET, raw)


def application_event(event_id="evt-123", status="interviewing", application_id="APP-1"):
    return {
        "eventId": event_id,
        "eventType": "application_updated",
        "timestamp": "2026-03-02T15:00:00Z",
        "data": {"applicationId": application_id, "status": status},
    }


class CountingHandler(BaseWebhookHandler):
    """Delegates to the real application handler and counts side effects"""

    def __init__(self, errors=None):
        super().__init__()
        self.inner = ApplicationHandler()
        self.errors = list(errors or [])
        self.calls = 0

    @property
    def event_types(self):
        return self.inner.event_types

    async def execute(self, db, event):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return await self.inner.execute(db, event)


@pytest.fixture
def webhooks(settings, clock):
    return WebhookService(settings, clock=clock)


def build_worker(settings, session_factory, clock, handler_lookup=get_handler):
    return WebhookWorker(
        settings,
        session_factory=session_factory,
        clock=clock,
        instance_id="test-instance",
        handler_lookup=handler_lookup,
        rng=lambda: 0.0,
    )


@pytest.mark.asyncio
async def test_valid_event_is_stored_for_processing(webhooks, settings, db):
    raw, signature = signed(settings, application_event())

    ack = await webhooks.receive(db, provider="icims", raw_body=raw, signature=signature)

    assert ack.verified
    assert not ack.is_duplicate
    event = await webhooks.repo.get(db, ack.webhook_id)
    assert event.status == "received"
    assert event.dedup_key == "event:evt-123"
    assert event.payload_hash == payload_hash(application_event())


@pytest.mark.asyncio
async def test_duplicate_event_id_is_acknowledged_once(webhooks, settings, db):
    raw, signature = signed(settings, application_event())

    first = await webhooks.receive(db, provider="icims", raw_body=raw, signature=signature)
    second = await webhooks.receive(db, provider="icims", raw_body=raw, signature=signature)

    assert second.is_duplicate
    assert second.webhook_id == first.webhook_id
    assert await webhooks.repo.count(db) == 1
    assert len(await AuditRepository().get_by_action(db, "webhook_deduped")) == 1


@pytest.mark.asyncio
async def test_events_without_id_dedup_on_payload_hash(webhooks, settings, db):
    body = application_event()
    del body["eventId"]
    raw, signature = signed(settings, body)
    # Same content, different key order and whitespace
    raw_again = json.dumps(body, indent=2, sort_keys=True).encode("utf-8")
    signature_again = compute_signature(settings.WEBHOOK_SECRET, raw_again)

    first = await webhooks.receive(db, provider="icims", raw_body=raw, signature=signature)
    second = await webhooks.receive(db, provider="icims", raw_body=raw_again, signature=signature_again)

    assert second.is_duplicate
    assert second.webhook_id == first.webhook_id
    assert (await webhooks.repo.get(db, first.webhook_id)).dedup_key.startswith("hash:")


@pytest.mark.asyncio
async def test_signature_prefix_is_accepted(webhooks, settings, db):
    raw, signature = signed(settings, application_event())
    ack = await webhooks.receive(db, provider="icims", raw_body=raw, signature=f"sha256={signature}")
    assert ack.verified


@pytest.mark.asyncio
async def test_bad_signature_is_stored_but_never_processed(webhooks, settings, session_factory, clock, db):
    raw, _ = signed(settings, application_event())

    ack = await webhooks.receive(db, provider="icims", raw_body=raw, signature="deadbeef")

    assert not ack.verified
    event = await webhooks.repo.get(db, ack.webhook_id)
    assert event.verified is False
    assert event.dedup_key is None
    assert await webhooks.repo.count_pending(db) == 0

    handler = CountingHandler()
    result = await build_worker(settings, session_factory, clock, lambda _: handler).process_batch()
    assert result.processed == 0
    assert handler.calls == 0


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(webhooks, settings, db):
    raw, _ = signed(settings, application_event())
    with pytest.raises(HTTPException) as exc_info:
        await webhooks.receive(db, provider="icims", raw_body=raw, signature=None)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_malformed_body_is_rejected(webhooks, db):
    with pytest.raises(HTTPException) as exc_info:
        await webhooks.receive(db, provider="icims", raw_body=b"{not json", signature="abc")
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "INVALID_JSON"

    with pytest.raises(HTTPException) as exc_info:
        await webhooks.receive(db, provider="icims", raw_body=b'{"eventId": "x"}', signature="abc")
    assert exc_info.value.detail["code"] == "MISSING_FIELD"


@pytest.mark.asyncio
async def test_redelivered_event_has_single_side_effect(webhooks, settings, session_factory, clock, make_request):
    await make_request(application_id="APP-1")
    raw, signature = signed(settings, application_event(event_id="evt-123", status="offer"))

    async with session_factory() as session:
        await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)
    assert ack.is_duplicate

    handler = CountingHandler()
    worker = build_worker(settings, session_factory, clock, lambda _: handler)
    assert (await worker.process_batch()).processed == 1
    assert (await worker.process_batch()).processed == 0
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_application_withdrawal_flags_request(webhooks, settings, session_factory, clock, make_request, db):
    request = await make_request(application_id="APP-9")
    raw, signature = signed(settings, application_event(event_id="evt-9", status="withdrawn", application_id="APP-9"))
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)

    result = await build_worker(settings, session_factory, clock).process_batch()
    assert result.processed == 1

    stored = await SchedulingRequestRepository().get(db, request.id)
    assert stored.ats_status == "withdrawn"
    assert stored.needs_attention is True

    event = await webhooks.repo.get(db, ack.webhook_id)
    assert event.status == "processed"
    assert event.processed_at == clock()
    assert len(await AuditRepository().get_by_action(db, "webhook_processed")) == 1


@pytest.mark.asyncio
async def test_unknown_event_type_is_a_noop(webhooks, settings, session_factory, clock, db):
    body = {"eventId": "evt-x", "eventType": "interview.feedback_submitted", "data": {}}
    raw, signature = signed(settings, body)
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)

    result = await build_worker(settings, session_factory, clock).process_batch()

    assert result.processed == 1
    assert (await webhooks.repo.get(db, ack.webhook_id)).status == "processed"


@pytest.mark.asyncio
async def test_missing_application_id_fails_permanently(webhooks, settings, session_factory, clock, db):
    body = {"eventId": "evt-bad", "eventType": "application_updated", "data": {"status": "offer"}}
    raw, signature = signed(settings, body)
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)

    result = await build_worker(settings, session_factory, clock).process_batch()

    assert result.failed == 1
    event = await webhooks.repo.get(db, ack.webhook_id)
    assert event.status == "failed"
    assert event.attempts == 1
    assert "applicationId" in event.last_error


@pytest.mark.asyncio
async def test_transient_failure_retries_then_flags_request(webhooks, settings, session_factory, clock, make_request, db):
    request = await make_request(application_id="APP-5")
    raw, signature = signed(settings, application_event(event_id="evt-5", application_id="APP-5"))
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)

    handler = CountingHandler(errors=[TransientError("ATS timeout")] * settings.WEBHOOK_MAX_ATTEMPTS)
    worker = build_worker(settings, session_factory, clock, lambda _: handler)

    for attempt in range(1, settings.WEBHOOK_MAX_ATTEMPTS):
        assert (await worker.process_batch()).failed == 1
        event = await webhooks.repo.get(db, ack.webhook_id)
        assert event.status == "received"
        assert event.attempts == attempt
        clock.now = event.run_after

    assert (await worker.process_batch()).failed == 1
    event = await webhooks.repo.get(db, ack.webhook_id)
    assert event.status == "failed"
    assert event.attempts == settings.WEBHOOK_MAX_ATTEMPTS

    stored = await SchedulingRequestRepository().get(db, request.id)
    assert stored.needs_attention is True
    assert "ATS timeout" in stored.needs_attention_reason
    assert len(await AuditRepository().get_by_action(db, "webhook_failed")) == 1
    assert len(await AuditRepository().get_by_action(db, "needs_attention_set")) == 1


@pytest.mark.asyncio
async def test_expired_claim_on_last_attempt_fails_and_flags(webhooks, settings, session_factory, clock, make_request, db):
    request = await make_request(application_id="APP-1")
    raw, signature = signed(settings, application_event())
    async with session_factory() as session:
        ack = await webhooks.receive(session, provider="icims", raw_body=raw, signature=signature)

    # A worker claimed the event on its last attempt and never came back
    async with session_factory() as session:
        event = await webhooks.repo.get(session, ack.webhook_id)
        await webhooks.repo.compare_and_set(
            session, id=event.id, expected={}, values={"attempts": settings.WEBHOOK_MAX_ATTEMPTS - 1},
        )
        event = await webhooks.repo.get(session, ack.webhook_id)
        assert await webhooks.repo.claim(session, event, now=clock())
        await session.commit()

    handler = CountingHandler()
    worker = build_worker(settings, session_factory, clock, lambda _: handler)
    clock.advance(seconds=settings.CLAIM_STALE_SECONDS + 1)
    result = await worker.process_batch()

    assert result.failed == 1
    assert handler.calls == 0
    stored = await webhooks.repo.get(db, ack.webhook_id)
    assert stored.status == "failed"
    assert stored.attempts == settings.WEBHOOK_MAX_ATTEMPTS
    assert "claim expired" in stored.last_error
    assert (await SchedulingRequestRepository().get(db, request.id)).needs_attention is True
    assert len(await AuditRepository().get_by_action(db, "webhook_failed")) == 1
