from datetime import timedelta

import pytest

from sched_core.models import CoordinatorPreference
from sched_core.schemas import notification_payloads as p
from sched_core.schemas.notification_schemas import Coordinator
from sched_core.services.notification_service import (
    NotificationService,
    build_idempotency_key,
    reminder_discriminator,
)
from sched_core.constants.job_types import EntityType, NotificationType


@pytest.fixture
def notifications(settings, clock):
    return NotificationService(settings, clock=clock)


@pytest.fixture
def coordinator():
    return Coordinator(user_id="coord-1", email="coord@example.com", name="Casey Coordinator")


def test_idempotency_key_format():
    assert build_idempotency_key("reminder_24h", "booking", "b1") == "reminder_24h:booking:b1"
    assert build_idempotency_key("reminder_24h", "booking", "b1", "2026-03-04T14") == "reminder_24h:booking:b1:2026-03-04T14"


def test_reminder_discriminator_tracks_reschedules(clock):
    assert reminder_discriminator(clock()) == "2026-03-02T15"
    assert reminder_discriminator(clock() + timedelta(minutes=59)) == "2026-03-02T15"
    assert reminder_discriminator(clock(), reschedule_count=2) == "2026-03-02T15-rev2"


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(notifications, db, make_request, make_booking):
    request = await make_request()
    booking = await make_booking(request)

    first = await notifications.enqueue_booking_confirmation(db, request, booking)
    second = await notifications.enqueue_booking_confirmation(db, request, booking)
    await db.commit()

    assert first.id == second.id
    assert first.idempotency_key == f"booking_confirmation:booking:{booking.id}"
    assert await notifications.repo.count(db, {"type": "booking_confirmation"}) == 1


@pytest.mark.asyncio
async def test_enqueue_rejects_mismatched_payload(notifications, db, make_request):
    request = await make_request()
    payload = p.CancelNotice(
        candidate_name=request.candidate_name,
        candidate_email=request.candidate_email,
        req_title=request.req_title,
        interview_type=request.interview_type,
        duration_minutes=30,
        reason="position filled",
        cancelled_by="recruiter",
    )
    with pytest.raises(ValueError):
        await notifications.enqueue(
            db,
            notification_type=NotificationType.booking_confirmation,
            entity_type=EntityType.scheduling_request,
            entity_id=request.id,
            to_email=request.candidate_email,
            payload=payload,
        )


@pytest.mark.asyncio
async def test_stored_payload_round_trips_through_tagged_union(notifications, db, make_request, make_booking):
    request = await make_request()
    booking = await make_booking(request)

    job = await notifications.enqueue_booking_confirmation(db, request, booking)
    payload = p.parse_payload(job.payload)

    assert isinstance(payload, p.BookingConfirmation)
    assert payload.interviewer_emails == ["interviewer@example.com"]
    assert "EST" in payload.scheduled_start_local


@pytest.mark.asyncio
async def test_reminders_scheduled_relative_to_event(notifications, db, make_request, make_booking, clock):
    request = await make_request()
    booking = await make_booking(request, scheduled_start=clock() + timedelta(days=3))

    jobs = await notifications.enqueue_reminders(db, request, booking)

    assert jobs["reminder_24h"].run_after == booking.scheduled_start - timedelta(hours=24)
    assert jobs["reminder_2h"].run_after == booking.scheduled_start - timedelta(hours=2)
    assert jobs["reminder_24h"].status == "PENDING"


@pytest.mark.asyncio
async def test_reminder_with_past_fire_time_is_skipped(notifications, db, make_request, make_booking, clock):
    request = await make_request()
    # Booked five hours out: the 24h reminder is already late, the 2h one is not
    booking = await make_booking(request, scheduled_start=clock() + timedelta(hours=5))

    jobs = await notifications.enqueue_reminders(db, request, booking)

    assert jobs["reminder_24h"] is None
    assert jobs["reminder_2h"] is not None
    assert await notifications.repo.count(db, {"type": "reminder_24h"}) == 0


@pytest.mark.asyncio
async def test_duplicate_reminder_enqueue_does_not_create_second_job(notifications, db, make_request, make_booking):
    request = await make_request()
    booking = await make_booking(request)

    await notifications.enqueue_reminders(db, request, booking)
    await notifications.enqueue_reminders(db, request, booking)

    assert await notifications.repo.count(db, {"entity_id": booking.id}) == 2


@pytest.mark.asyncio
async def test_cancelling_booking_cancels_pending_reminders(notifications, db, make_request, make_booking, coordinator):
    request = await make_request()
    booking = await make_booking(request)

    confirmed = await notifications.on_booking_confirmed(db, request, booking, coordinator=coordinator)
    await db.commit()
    reminder_ids = [confirmed["reminder_24h"].id, confirmed["reminder_2h"].id]

    await notifications.on_booking_cancelled(
        db, request, booking, reason="candidate withdrew", cancelled_by="candidate", coordinator=coordinator
    )
    await db.commit()

    for job_id in reminder_ids:
        assert (await notifications.repo.get(db, job_id)).status == "CANCELED"

    # Confirmation is not a reminder and stays queued
    confirmation = await notifications.repo.get(db, confirmed["booking_confirmation"].id)
    assert confirmation.status == "PENDING"
    assert await notifications.repo.count(db, {"type": "cancel_notice"}) == 1
    assert await notifications.repo.count(db, {"type": "coordinator_cancel"}) == 1


@pytest.mark.asyncio
async def test_reschedule_replaces_reminders(notifications, db, session_factory, make_request, make_booking, clock):
    request = await make_request()
    booking = await make_booking(request)
    first = await notifications.enqueue_reminders(db, request, booking)
    await db.commit()

    old_start, old_end = booking.scheduled_start, booking.scheduled_end
    booking.scheduled_start = old_start + timedelta(days=1)
    booking.scheduled_end = old_end + timedelta(days=1)
    booking.reschedule_count = 1

    jobs = await notifications.on_booking_rescheduled(db, request, booking, old_start, old_end, reason="conflict")
    await db.commit()

    assert (await notifications.repo.get(db, first["reminder_24h"].id)).status == "CANCELED"
    assert jobs["reminder_24h"].id != first["reminder_24h"].id
    assert jobs["reminder_24h"].idempotency_key.endswith("-rev1")
    assert jobs["reschedule_confirmation"].status == "PENDING"


@pytest.mark.asyncio
async def test_explicit_resend_creates_new_job(notifications, db, make_request, clock):
    request = await make_request()

    original = await notifications.enqueue_self_schedule_link(db, request, "https://app.example.com/s/tok")
    clock.advance(seconds=5)
    resend = await notifications.resend_self_schedule_link(db, request, "https://app.example.com/s/tok")

    assert resend.id != original.id
    assert ":resend-" in resend.idempotency_key


@pytest.mark.asyncio
async def test_coordinator_preferences_gate_notifications(notifications, db, make_request, make_booking, coordinator):
    request = await make_request()
    booking = await make_booking(request)

    db.add(CoordinatorPreference(
        user_id=coordinator.user_id,
        email=coordinator.email,
        notify_on_booking=False,
        notify_on_cancel=True,
        notify_on_escalation=True,
        digest_frequency="immediate",
    ))
    await db.flush()

    assert await notifications.enqueue_coordinator_booking(db, request, booking, coordinator) is None
    assert await notifications.enqueue_coordinator_cancel(db, request, booking, "no show", coordinator) is not None


@pytest.mark.asyncio
async def test_digest_preference_suppresses_immediate_send(notifications, db, make_request, coordinator):
    request = await make_request()
    db.add(CoordinatorPreference(user_id=coordinator.user_id, email=coordinator.email, digest_frequency="daily"))
    await db.flush()

    job = await notifications.enqueue_escalation(
        db, request, "booking", coordinator, days_since_request=3, is_expired=False
    )
    assert job is None


@pytest.mark.asyncio
async def test_escalation_is_daily(notifications, db, make_request, coordinator):
    request = await make_request()

    day_two = await notifications.enqueue_escalation(db, request, "booking", coordinator, 2, False)
    again = await notifications.enqueue_escalation(db, request, "booking", coordinator, 2, False)
    day_three = await notifications.enqueue_escalation(db, request, "booking", coordinator, 3, False)

    assert day_two.id == again.id
    assert day_three.id != day_two.id
    assert day_two.payload["public_link"].endswith(f"/coordinator/{request.id}")


@pytest.mark.asyncio
async def test_booking_confirmation_resend_keeps_history(notifications, db, make_request, make_booking, clock):
    request = await make_request()
    booking = await make_booking(request)

    await notifications.enqueue_booking_confirmation(db, request, booking)
    await notifications.enqueue_booking_confirmation(db, request, booking)
    clock.advance(seconds=1)
    await notifications.resend_booking_confirmation(db, request, booking)

    jobs = await notifications.get_for_entity(db, "booking", booking.id)
    assert len(jobs) == 2
    assert jobs[0].idempotency_key == f"booking_confirmation:booking:{booking.id}"
