import asyncio

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from sched_core.db.database import Base, make_session_factory
from sched_core.services.lock_service import LockService


@pytest.fixture
def locks(settings, clock):
    return LockService(settings, clock=clock)


@pytest.fixture
async def file_session_factory(tmp_path):
    # Separate connections, so the two acquires really race in the database
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'locks.db'}")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.mark.asyncio
async def test_acquire_is_exclusive(locks, file_session_factory):
    async with file_session_factory() as first, file_session_factory() as second:
        granted = await asyncio.gather(
            locks.acquire(first, "notify", "instance-a"),
            locks.acquire(second, "notify", "instance-b"),
        )

    assert sorted(granted) == [False, True]

    winner = "instance-a" if granted[0] else "instance-b"
    async with file_session_factory() as session:
        holder = await locks.get_holder(session, "notify")
    assert holder.holder_id == winner


@pytest.mark.asyncio
async def test_reacquire_by_same_holder_extends_lease(locks, db, clock):
    assert await locks.acquire(db, "notify", "instance-a", ttl_seconds=60)
    clock.advance(seconds=30)
    assert await locks.acquire(db, "notify", "instance-a", ttl_seconds=60)

    holder = await locks.get_holder(db, "notify")
    assert (holder.expires_at - clock()).total_seconds() == 60


@pytest.mark.asyncio
async def test_expired_lock_can_be_taken_over(locks, db, clock):
    assert await locks.acquire(db, "reconcile", "crashed-instance", ttl_seconds=120)
    clock.advance(seconds=121)

    assert not await locks.is_held(db, "reconcile")
    assert await locks.acquire(db, "reconcile", "instance-b")
    assert (await locks.get_holder(db, "reconcile")).holder_id == "instance-b"


@pytest.mark.asyncio
async def test_release_only_by_owner(locks, db):
    await locks.acquire(db, "webhook", "instance-a")

    assert not await locks.release(db, "webhook", "instance-b")
    assert await locks.is_held(db, "webhook")

    assert await locks.release(db, "webhook", "instance-a")
    assert not await locks.is_held(db, "webhook")
    # Releasing an absent lock is fine
    assert await locks.release(db, "webhook", "instance-a")


@pytest.mark.asyncio
async def test_renew_requires_live_lease(locks, db, clock):
    await locks.acquire(db, "notify", "instance-a", ttl_seconds=60)
    assert await locks.renew(db, "notify", "instance-a", ttl_seconds=60)
    assert not await locks.renew(db, "notify", "instance-b", ttl_seconds=60)

    clock.advance(seconds=61)
    assert not await locks.renew(db, "notify", "instance-a", ttl_seconds=60)


@pytest.mark.asyncio
async def test_locks_are_per_resource(locks, db):
    assert await locks.acquire(db, "notify", "instance-a")
    assert await locks.acquire(db, "webhook", "instance-b")
