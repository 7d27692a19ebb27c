"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

ACTIVE_STATUSES = frozenset(
    {RideStatus.REQUESTED, RideStatus.ACCEPTED, RideStatus.IN_PROGRESS}
)
TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

# Statuses in which a driver is attached to the ride
DRIVER_STATUSES = frozenset(
    {RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED}
)


class Role(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    EMPLOYER = "employer"
    EMPLOYEE = "employee"
    ADMIN = "admin"


# Roles whose principals see every ride request
FLEET_ROLES = frozenset({Role.DRIVER, Role.EMPLOYER, Role.ADMIN})

# Roles allowed to read the activity log
AUDIT_ROLES = frozenset({Role.EMPLOYER, Role.ADMIN})


class ActionType(str, enum.Enum):
    RIDE_REQUESTED = "ride_requested"
    RIDE_ACCEPTED = "ride_accepted"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"


STATUS_ACTIONS: dict[RideStatus, ActionType] = {
    RideStatus.REQUESTED: ActionType.RIDE_REQUESTED,
    RideStatus.ACCEPTED: ActionType.RIDE_ACCEPTED,
    RideStatus.IN_PROGRESS: ActionType.RIDE_STARTED,
    RideStatus.COMPLETED: ActionType.RIDE_COMPLETED,
    RideStatus.CANCELLED: ActionType.RIDE_CANCELLED,
}


class Table(str, enum.Enum):
    RIDE_REQUESTS = "ride_requests"
    ACTIVITY_LOGS = "activity_logs"


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
