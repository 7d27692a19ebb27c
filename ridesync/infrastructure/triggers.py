"""
Activity-log side effects of ride writes.

Plays the role a database trigger would: every ride insert and every
status-changing update yields exactly one audit entry, written by the
store in the same transaction as the ride write.  Client code never
creates activity rows itself.
"""

from __future__ import annotations

from typing import Optional

from ridesync.domain.entities import RideRequest
from ridesync.domain.enums import STATUS_ACTIONS, ActionType, RideStatus

_TEMPLATES: dict[ActionType, str] = {
    ActionType.RIDE_REQUESTED: "Ride requested from {pickup} to {destination} ({passengers} passenger{plural})",
    ActionType.RIDE_ACCEPTED: "Driver {driver} accepted ride from {pickup} to {destination}",
    ActionType.RIDE_STARTED: "Ride from {pickup} to {destination} started",
    ActionType.RIDE_COMPLETED: "Ride from {pickup} to {destination} completed",
    ActionType.RIDE_CANCELLED: "Ride from {pickup} to {destination} cancelled",
}


def describe(action: ActionType, ride: RideRequest) -> str:
    return _TEMPLATES[action].format(
        pickup=ride.pickup_location,
        destination=ride.destination,
        passengers=ride.passenger_count,
        plural="" if ride.passenger_count == 1 else "s",
        driver=ride.driver_id,
    )


def activity_for(ride: RideRequest, actor: Optional[str] = None) -> dict:
    """
    ``activity_logs`` row values recording that *ride* entered its status.

    *actor* is the principal who made the change.  Without one, driver-side
    transitions are credited to the driver and the rest to the rider.
    """
    action = STATUS_ACTIONS[ride.status]
    if actor is None:
        actor = ride.rider_id
        if ride.status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED):
            actor = ride.driver_id
    return {
        "action_type": action,
        "action_description": describe(action, ride),
        "ride_id": ride.id,
        "user_id": actor,
    }
