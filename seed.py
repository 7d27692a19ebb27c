"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 7 sample principals with their roles
  - 6 sample rides driven through the real lifecycle (requested, accepted,
    in progress, completed, cancelled) so the activity log is filled by
    the same path the API uses
"""

import asyncio

from sqlalchemy import func, select

from ridesync.config import settings
from ridesync.domain.enums import Role
from ridesync.infrastructure.change_feed import LocalChangeFeed
from ridesync.infrastructure.database import build_engine, build_session_factory
from ridesync.infrastructure.models import UserRoleModel
from ridesync.infrastructure.store import SqlRecordStore
from ridesync.sync.identity import IdentityContext
from ridesync.sync.rides import RideSyncEngine


PRINCIPALS = {
    "rider-ava": [Role.RIDER],
    "rider-marcus": [Role.RIDER],
    "employee-jada": [Role.EMPLOYEE],
    "driver-leon": [Role.DRIVER],
    "driver-tasha": [Role.DRIVER],
    "employer-fedco": [Role.EMPLOYER],
    "admin-root": [Role.ADMIN],
}

# (rider, pickup, destination, passengers, driver, final step)
RIDES = [
    ("rider-ava", "Memphis International Airport", "Peabody Hotel", 2, None, "requested"),
    ("rider-marcus", "Overton Square", "FedExForum", 1, "driver-leon", "accepted"),
    ("employee-jada", "Cordova Town Center", "FedEx World Hub", 1, "driver-tasha", "in_progress"),
    ("rider-ava", "Graceland", "Beale Street", 3, "driver-leon", "completed"),
    ("employee-jada", "Germantown Parkway", "St. Jude Campus", 1, "driver-tasha", "completed"),
    ("rider-marcus", "Shelby Farms", "Crosstown Concourse", 1, None, "cancelled"),
]


async def _as(store, user_id: str) -> RideSyncEngine:
    identity = IdentityContext(store)
    await identity.bind(user_id)
    return RideSyncEngine(store, identity)


async def seed(store: SqlRecordStore, session_factory):
    async with session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserRoleModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Roles ─────────────────────────────────────────────────────
        for user_id, roles in PRINCIPALS.items():
            for role in roles:
                session.add(UserRoleModel(user_id=user_id, role=role))
        await session.commit()
        print(f"  Assigned roles to {len(PRINCIPALS)} principals")

    # ── Rides ─────────────────────────────────────────────────────────
    for rider_id, pickup, destination, passengers, driver_id, final in RIDES:
        rider = await _as(store, rider_id)
        created = await rider.request_ride(pickup, destination, passengers)
        if not created.ok:
            raise RuntimeError(f"Seeding ride failed: {created.error}")
        ride_id = created.data.id

        if final == "cancelled":
            await rider.cancel_ride(ride_id)
            continue
        if driver_id is None:
            continue

        driver = await _as(store, driver_id)
        await driver.accept_ride(ride_id)
        if final in ("in_progress", "completed"):
            await driver.start_ride(ride_id)
        if final == "completed":
            await driver.complete_ride(ride_id)
    print(f"  Created {len(RIDES)} rides")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    engine = build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    store = SqlRecordStore(session_factory, LocalChangeFeed())
    try:
        await seed(store, session_factory)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
