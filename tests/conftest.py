import os

# Settings and loggers are built at import time
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

import sched_core.models  # noqa: F401
from sched_core.core.config import Settings
from sched_core.db.database import Base, make_session_factory
from sched_core.models import Booking, SchedulingRequest

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingTransport:
    """Mail transport double; raises the queued errors in order, then succeeds"""

    def __init__(self, errors: List[BaseException] = None):
        self.errors = list(errors or [])
        self.sent: List[Any] = []
        self.closed = False

    async def send(self, message) -> str:
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        LOG_TO_FILE=False,
        DB_URL="sqlite+aiosqlite://",
        CRON_SECRET="cron-secret",
        WEBHOOK_SECRET="hook-secret",
        BACKOFF_JITTER_RATIO=0.0,
        BATCH_SIZE=10,
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_request(session_factory, clock):
    async def _make(**overrides: Dict[str, Any]) -> SchedulingRequest:
        values = {
            "application_id": "APP-1",
            "req_id": "REQ-1",
            "candidate_name": "Jordan Lee",
            "candidate_email": "jordan@example.com",
            "candidate_timezone": "America/New_York",
            "req_title": "Backend Engineer",
            "interview_type": "phone_screen",
            "duration_minutes": 30,
            "organizer_email": "recruiter@example.com",
            "interviewer_emails": ["interviewer@example.com"],
            "expires_at": clock() + timedelta(days=7),
        }
        values.update(overrides)
        async with session_factory() as session:
            request = SchedulingRequest(**values)
            session.add(request)
            await session.commit()
            return request

    return _make


@pytest.fixture
def make_booking(session_factory, clock):
    async def _make(request: SchedulingRequest, **overrides: Dict[str, Any]) -> Booking:
        start = overrides.pop("scheduled_start", clock() + timedelta(days=3))
        values = {
            "request_id": request.id,
            "scheduled_start": start,
            "scheduled_end": start + timedelta(minutes=30),
            "calendar_event_id": "cal-1",
            "calendar_event_status": "confirmed",
            "status": "confirmed",
            "confirmed_at": clock(),
        }
        values.update(overrides)
        async with session_factory() as session:
            booking = Booking(**values)
            session.add(booking)
            await session.commit()
            return booking

    return _make
