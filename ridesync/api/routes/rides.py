"""
Ride endpoints
==============

GET   /api/v1/rides                        -- rides visible to the caller (optional ?view=)
POST  /api/v1/rides                        -- request a ride (returns 202 Accepted)
POST  /api/v1/rides/{ride_id}/accept       -- driver accepts a requested ride
POST  /api/v1/rides/{ride_id}/start        -- assigned driver starts the ride
POST  /api/v1/rides/{ride_id}/complete     -- assigned driver completes the ride
POST  /api/v1/rides/{ride_id}/cancel       -- rider / driver / admin cancels

A lost accept race answers 200 with ``applied=false``; the caller should
read the ride again rather than assume it won.
"""

import enum

from fastapi import APIRouter, Depends, Request

from ridesync.api.dependencies import get_ride_engine
from ridesync.api.errors import raise_for
from ridesync.api.middleware import limiter
from ridesync.api.schemas import MutationResponse, RideCreateRequest, RideResponse
from ridesync.config import settings
from ridesync.domain import views
from ridesync.domain.errors import StoreError
from ridesync.domain.results import MutationResult
from ridesync.sync.rides import RideSyncEngine

router = APIRouter(prefix="/rides", tags=["rides"])


class RideView(str, enum.Enum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    HISTORY = "history"
    TODAY = "today"
    MINE = "mine"


def _to_response(result: MutationResult) -> MutationResponse:
    if result.error is not None:
        raise_for(result.error)
    ride = RideResponse.model_validate(result.data) if result.data else None
    return MutationResponse(applied=result.applied, ride=ride)


@router.get(
    "",
    response_model=list[RideResponse],
    summary="List rides visible to the caller",
)
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    view: RideView = RideView.ALL,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    try:
        rides = await engine.refetch()
    except StoreError as exc:
        raise_for(exc)

    principal = engine.principal
    if view == RideView.ACTIVE:
        rides = views.active(rides)
    elif view == RideView.COMPLETED:
        rides = views.completed(rides)
    elif view == RideView.CANCELLED:
        rides = views.cancelled(rides)
    elif view == RideView.HISTORY:
        rides = views.history(rides)
    elif view == RideView.TODAY:
        rides = views.today(rides)
    elif view == RideView.MINE:
        rides = [
            r for r in rides
            if principal.id in (r.rider_id, r.driver_id)
        ]
    return rides


@router.post(
    "",
    status_code=202,
    response_model=RideResponse,
    summary="Request a ride",
    responses={202: {"description": "Ride requested; waiting for a driver."}},
)
@limiter.limit(settings.rate_limit)
async def request_ride(
    request: Request,
    body: RideCreateRequest,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    result = await engine.request_ride(
        body.pickup_location, body.destination, body.passenger_count
    )
    if result.error is not None:
        raise_for(result.error)
    return result.data


@router.post(
    "/{ride_id}/accept",
    response_model=MutationResponse,
    summary="Accept a requested ride",
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: str,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    return _to_response(await engine.accept_ride(ride_id))


@router.post(
    "/{ride_id}/start",
    response_model=MutationResponse,
    summary="Start an accepted ride",
)
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: str,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    return _to_response(await engine.start_ride(ride_id))


@router.post(
    "/{ride_id}/complete",
    response_model=MutationResponse,
    summary="Complete a ride in progress",
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: str,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    return _to_response(await engine.complete_ride(ride_id))


@router.post(
    "/{ride_id}/cancel",
    response_model=MutationResponse,
    summary="Cancel a ride",
    description="Permitted from any non-terminal status.",
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    engine: RideSyncEngine = Depends(get_ride_engine),
):
    return _to_response(await engine.cancel_ride(ride_id))
