"""
Derived views over a ride list, plus the per-role dashboard summaries
built from them.  Nothing here is stored; every view is recomputed from
the engine's current cache.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, tzinfo
from typing import Iterable, Optional, Sequence

from .entities import ActivityLogEntry, Principal, RideRequest
from .enums import ACTIVE_STATUSES, TERMINAL_STATUSES, RideStatus, Role


def active(rides: Iterable[RideRequest]) -> list[RideRequest]:
    return [r for r in rides if r.status in ACTIVE_STATUSES]


def completed(rides: Iterable[RideRequest]) -> list[RideRequest]:
    return [r for r in rides if r.status == RideStatus.COMPLETED]


def cancelled(rides: Iterable[RideRequest]) -> list[RideRequest]:
    return [r for r in rides if r.status == RideStatus.CANCELLED]


def history(rides: Iterable[RideRequest]) -> list[RideRequest]:
    return [r for r in rides if r.status in TERMINAL_STATUSES]


def open_requests(rides: Iterable[RideRequest]) -> list[RideRequest]:
    return [r for r in rides if r.status == RideStatus.REQUESTED]


def owned_by(rides: Iterable[RideRequest], rider_id: str) -> list[RideRequest]:
    return [r for r in rides if r.rider_id == rider_id]


def driver_active(rides: Iterable[RideRequest], driver_id: str) -> list[RideRequest]:
    """Rides assigned to *driver_id* that are still underway."""
    return [
        r for r in rides if r.driver_id == driver_id and r.status in ACTIVE_STATUSES
    ]


def _local_date(moment: datetime, tz: Optional[tzinfo]) -> date:
    return moment.astimezone(tz).date()


def today(
    rides: Iterable[RideRequest],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> list[RideRequest]:
    """Rides created on the current local date (``tz=None`` = system zone)."""
    now = now or datetime.now().astimezone()
    current = _local_date(now, tz)
    return [r for r in rides if _local_date(r.created_at, tz) == current]


def completed_today(
    rides: Iterable[RideRequest],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> list[RideRequest]:
    now = now or datetime.now().astimezone()
    current = _local_date(now, tz)
    return [
        r
        for r in rides
        if r.status == RideStatus.COMPLETED
        and _local_date(r.completed_at or r.updated_at or r.created_at, tz) == current
    ]


def status_breakdown(rides: Iterable[RideRequest]) -> dict[RideStatus, int]:
    counts = Counter(r.status for r in rides)
    return {status: counts.get(status, 0) for status in RideStatus}


# ── Dashboards ────────────────────────────────────────────────────────


def dashboard_for(
    role: Role,
    principal: Principal,
    rides: Sequence[RideRequest],
    activities: Sequence[ActivityLogEntry] = (),
    now: Optional[datetime] = None,
) -> dict:
    """
    Assemble the data one role's dashboard renders.

    Returns plain dicts of lists/counts; the API layer wraps them in
    response schemas.
    """
    if role in (Role.RIDER, Role.EMPLOYEE):
        mine = owned_by(rides, principal.id)
        return {
            "active": active(mine),
            "past": history(mine),
        }
    if role == Role.DRIVER:
        return {
            "new_requests": open_requests(rides),
            "my_active": driver_active(rides, principal.id),
            "completed_today": [
                r for r in completed_today(rides, now) if r.driver_id == principal.id
            ],
        }
    if role == Role.EMPLOYER:
        return {
            "today_count": len(today(rides, now)),
            "active_count": len(active(rides)),
            "completed_count": len(completed(rides)),
            "cancelled_count": len(cancelled(rides)),
            "recent_activity": list(activities),
        }
    # admin
    return {
        "total": len(rides),
        "breakdown": {s.value: n for s, n in status_breakdown(rides).items()},
        "recent_active": active(rides)[:5],
        "recent_activity": list(activities),
    }
