"""
End-to-end ride lifecycle scenarios through engines on a shared store.

Each participant has its own engine, as each dashboard would; every
assertion is about what the participant's cache shows after the
streamed changes have been reconciled.
"""

import pytest

from ridesync.domain import views
from ridesync.domain.enums import ActionType, RideStatus, Table
from tests.conftest import DRIVER_A, RIDER


@pytest.mark.asyncio
async def test_request_then_accept(ride_engine):
    rider = await ride_engine(RIDER)
    driver = await ride_engine(DRIVER_A)

    result = await rider.request_ride("123 Main St", "456 Oak Ave", 2)
    created = result.data

    assert created.status == RideStatus.REQUESTED
    assert created.driver_id is None
    assert created.passenger_count == 2
    assert [r.id for r in views.open_requests(driver.rides)] == [created.id]

    accepted = await driver.accept_ride(created.id)

    assert accepted.applied
    seen_by_rider = rider.get(created.id)
    assert seen_by_rider.status == RideStatus.ACCEPTED
    assert seen_by_rider.driver_id == DRIVER_A
    assert seen_by_rider.accepted_at is not None
    assert views.open_requests(driver.rides) == []
    assert [r.id for r in views.driver_active(driver.rides, DRIVER_A)] == [created.id]


@pytest.mark.asyncio
async def test_start_and_complete(ride_engine):
    rider = await ride_engine(RIDER)
    driver = await ride_engine(DRIVER_A)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave", 2)).data
    await driver.accept_ride(created.id)

    started = await driver.start_ride(created.id)
    assert started.applied
    assert rider.get(created.id).status == RideStatus.IN_PROGRESS

    finished = await driver.complete_ride(created.id)
    assert finished.applied

    row = rider.get(created.id)
    assert row.status == RideStatus.COMPLETED
    assert row.completed_at is not None
    assert row.driver_id == DRIVER_A
    assert [r.id for r in views.history(rider.rides)] == [created.id]
    assert views.active(rider.rides) == []
    assert [r.id for r in views.completed_today(driver.rides)] == [created.id]


@pytest.mark.asyncio
async def test_rider_cancels_open_request(store, ride_engine):
    rider = await ride_engine(RIDER)
    driver = await ride_engine(DRIVER_A)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave", 2)).data

    result = await rider.cancel_ride(created.id)

    assert result.applied
    assert rider.get(created.id).status == RideStatus.CANCELLED
    assert views.active(rider.rides) == []
    assert views.active(driver.rides) == []
    assert [r.id for r in views.history(rider.rides)] == [created.id]
    assert [r.id for r in views.cancelled(driver.rides)] == [created.id]

    stored = await store.select(Table.RIDE_REQUESTS, {"id": created.id})
    assert stored[0].status == RideStatus.CANCELLED


@pytest.mark.asyncio
async def test_lifecycle_is_audited_in_order(store, ride_engine):
    rider = await ride_engine(RIDER)
    driver = await ride_engine(DRIVER_A)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave", 2)).data
    await driver.accept_ride(created.id)
    await driver.start_ride(created.id)
    await driver.complete_ride(created.id)

    entries = await store.select(
        Table.ACTIVITY_LOGS, {"ride_id": created.id}, descending=False
    )

    assert [e.action_type for e in entries] == [
        ActionType.RIDE_REQUESTED,
        ActionType.RIDE_ACCEPTED,
        ActionType.RIDE_STARTED,
        ActionType.RIDE_COMPLETED,
    ]
    assert entries[0].user_id == RIDER
    assert all(e.user_id == DRIVER_A for e in entries[1:])
