"""
Dashboard endpoints
===================

GET /api/v1/dashboards/{role} -- the data one role's dashboard renders

The caller must hold the role they ask for.  Rides and activity are read
through the same engines the live sockets use.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from ridesync.api.dependencies import get_activity_engine, get_ride_engine
from ridesync.api.errors import raise_for
from ridesync.api.middleware import limiter
from ridesync.api.schemas import (
    AdminDashboardResponse,
    DriverDashboardResponse,
    EmployerDashboardResponse,
    RiderDashboardResponse,
)
from ridesync.config import settings
from ridesync.domain import views
from ridesync.domain.enums import Role
from ridesync.domain.errors import StoreError
from ridesync.sync.activity import ActivityFeedEngine
from ridesync.sync.rides import RideSyncEngine

router = APIRouter(prefix="/dashboards", tags=["dashboards"])

_RESPONSES = {
    Role.RIDER: RiderDashboardResponse,
    Role.EMPLOYEE: RiderDashboardResponse,
    Role.DRIVER: DriverDashboardResponse,
    Role.EMPLOYER: EmployerDashboardResponse,
    Role.ADMIN: AdminDashboardResponse,
}


@router.get(
    "/{role}",
    response_model=None,
    summary="Dashboard data for one role",
)
@limiter.limit(settings.rate_limit)
async def dashboard(
    request: Request,
    role: Role,
    rides: RideSyncEngine = Depends(get_ride_engine),
    activity: ActivityFeedEngine = Depends(get_activity_engine),
):
    principal = rides.principal
    if not principal.has_role(role):
        raise HTTPException(
            status_code=403, detail=f"You do not hold the {role.value} role"
        )

    try:
        ride_rows = await rides.refetch()
        entries = await activity.fetch_recent()
    except StoreError as exc:
        raise_for(exc)

    data = views.dashboard_for(role, principal, ride_rows, entries)
    return _RESPONSES[role].model_validate(
        {
            key: [row.model_dump() for row in value] if isinstance(value, list) else value
            for key, value in data.items()
        }
    )
