"""
Shared test fixtures.

Each test gets its own SQLite database file (via aiosqlite) and an
in-process change feed, so tests run without Docker / PostgreSQL / Redis.
A file rather than ``:memory:`` lets concurrent sessions use separate
connections, which the accept-race tests rely on.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ridesync.domain.enums import Role
from ridesync.infrastructure.change_feed import LocalChangeFeed
from ridesync.infrastructure.database import Base
from ridesync.infrastructure.models import UserRoleModel
from ridesync.infrastructure.store import SqlRecordStore
from ridesync.sync.activity import ActivityFeedEngine
from ridesync.sync.identity import IdentityContext
from ridesync.sync.rides import RideSyncEngine

RIDER = "rider-1"
OTHER_RIDER = "rider-2"
EMPLOYEE = "employee-1"
DRIVER_A = "driver-a"
DRIVER_B = "driver-b"
EMPLOYER = "employer-1"
ADMIN = "admin-1"
NOBODY = "no-roles"

PRINCIPALS = {
    RIDER: [Role.RIDER],
    OTHER_RIDER: [Role.RIDER],
    EMPLOYEE: [Role.EMPLOYEE],
    DRIVER_A: [Role.DRIVER],
    DRIVER_B: [Role.DRIVER],
    EMPLOYER: [Role.EMPLOYER],
    ADMIN: [Role.ADMIN],
}


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a session factory, dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ridesync.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        for user_id, roles in PRINCIPALS.items():
            for role in roles:
                session.add(UserRoleModel(user_id=user_id, role=role))
        await session.commit()

    yield factory

    await engine.dispose()


@pytest.fixture
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def store(session_factory, feed) -> SqlRecordStore:
    return SqlRecordStore(session_factory, feed)


@pytest_asyncio.fixture
async def identity_for(store):
    async def _bind(user_id: str) -> IdentityContext:
        identity = IdentityContext(store)
        await identity.bind(user_id)
        return identity

    return _bind


@pytest_asyncio.fixture
async def ride_engine(store, identity_for):
    """Factory for started ride engines; all are stopped at teardown."""
    engines: list[RideSyncEngine] = []

    async def _open(user_id: str, **kwargs) -> RideSyncEngine:
        engine = RideSyncEngine(store, await identity_for(user_id), **kwargs)
        await engine.start()
        engines.append(engine)
        return engine

    yield _open

    for engine in engines:
        await engine.stop()


@pytest_asyncio.fixture
async def activity_engine(store, identity_for):
    engines: list[ActivityFeedEngine] = []

    async def _open(user_id: str, **kwargs) -> ActivityFeedEngine:
        engine = ActivityFeedEngine(store, await identity_for(user_id), **kwargs)
        await engine.start()
        engines.append(engine)
        return engine

    yield _open

    for engine in engines:
        await engine.stop()
