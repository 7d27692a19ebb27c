"""
Two drivers accept the same request at the same instant.

The accept is a single conditional update guarded on ``status =
requested``, so exactly one driver wins and the loser gets a no-op,
never an error.  Both engines converge on the winner's row.
"""

import asyncio

import pytest

from ridesync.domain.enums import RideStatus, Table
from tests.conftest import DRIVER_A, DRIVER_B, RIDER


@pytest.mark.asyncio
async def test_simultaneous_accept_has_exactly_one_winner(store, ride_engine):
    rider = await ride_engine(RIDER)
    driver_a = await ride_engine(DRIVER_A)
    driver_b = await ride_engine(DRIVER_B)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave")).data

    result_a, result_b = await asyncio.gather(
        driver_a.accept_ride(created.id),
        driver_b.accept_ride(created.id),
    )

    assert result_a.ok and result_b.ok
    assert sorted([result_a.applied, result_b.applied]) == [False, True]
    winner_result = result_a if result_a.applied else result_b
    loser_result = result_b if result_a.applied else result_a
    winner = DRIVER_A if result_a.applied else DRIVER_B

    assert winner_result.data.driver_id == winner
    assert loser_result.is_no_op
    assert loser_result.data is None

    for engine in (rider, driver_a, driver_b):
        cached = engine.get(created.id)
        assert cached.status == RideStatus.ACCEPTED
        assert cached.driver_id == winner

    stored = await store.select(Table.RIDE_REQUESTS, {"id": created.id})
    assert stored[0].driver_id == winner


@pytest.mark.asyncio
async def test_race_writes_a_single_activity_entry(store, ride_engine):
    rider = await ride_engine(RIDER)
    driver_a = await ride_engine(DRIVER_A)
    driver_b = await ride_engine(DRIVER_B)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave")).data

    await asyncio.gather(
        driver_a.accept_ride(created.id),
        driver_b.accept_ride(created.id),
    )

    entries = await store.select(Table.ACTIVITY_LOGS, {"ride_id": created.id})
    assert sorted(e.action_type.value for e in entries) == [
        "ride_accepted",
        "ride_requested",
    ]


@pytest.mark.asyncio
async def test_late_accept_after_cancel_is_a_no_op(ride_engine):
    rider = await ride_engine(RIDER)
    driver = await ride_engine(DRIVER_A)
    created = (await rider.request_ride("123 Main St", "456 Oak Ave")).data

    await rider.cancel_ride(created.id)
    result = await driver.accept_ride(created.id)

    assert result.is_no_op
    assert driver.get(created.id).status == RideStatus.CANCELLED
