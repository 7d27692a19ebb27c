"""
Domain entities.

Rows coming out of the record store are validated into these models at
the store boundary, so ``status`` and ``action_type`` are always enum
members and the ride invariants hold for every cached row:

* ``driver_id`` is set  <=>  status in {accepted, in_progress, completed}
* ``accepted_at`` is set  <=>  ``driver_id`` is set
* ``completed_at`` is set  <=>  status == completed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import (
    ACTIVE_STATUSES,
    AUDIT_ROLES,
    DRIVER_STATUSES,
    FLEET_ROLES,
    RIDE_TRANSITIONS,
    ActionType,
    ChangeType,
    RideStatus,
    Role,
    Table,
)
from .errors import ValidationError


class InvalidStateTransition(ValidationError):
    """Raised when a ride status change violates the state machine."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Rows ──────────────────────────────────────────────────────────────


class RideRequest(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    pickup_location: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    passenger_count: int = Field(1, ge=1)
    status: RideStatus = RideStatus.REQUESTED
    created_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"frozen": True, "from_attributes": True}

    @field_validator("created_at", "accepted_at", "completed_at", "updated_at")
    @classmethod
    def normalise_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_invariants(self) -> "RideRequest":
        if (self.driver_id is not None) != (self.status in DRIVER_STATUSES):
            raise ValueError(
                f"driver_id must be set exactly when status is one of "
                f"{sorted(s.value for s in DRIVER_STATUSES)}"
            )
        if (self.accepted_at is not None) != (self.driver_id is not None):
            raise ValueError("accepted_at must be set exactly when driver_id is set")
        if (self.completed_at is not None) != (self.status == RideStatus.COMPLETED):
            raise ValueError("completed_at must be set exactly when status is completed")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())

    def ensure_transition(self, new_status: RideStatus) -> None:
        """Raise if moving to *new_status* would break the state machine."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransition(
                f"Cannot transition ride {self.id} from "
                f"{self.status.value} to {new_status.value}"
            )


class ActivityLogEntry(BaseModel):
    id: str
    action_type: ActionType
    action_description: str
    ride_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime

    model_config = {"frozen": True, "from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def normalise_tz(cls, value: datetime) -> datetime:
        return _as_utc(value)


Row = Union[RideRequest, ActivityLogEntry]

ROW_MODELS: dict[Table, type[BaseModel]] = {
    Table.RIDE_REQUESTS: RideRequest,
    Table.ACTIVITY_LOGS: ActivityLogEntry,
}


class ChangeEvent(BaseModel):
    """One row-level change delivered by the change feed."""

    table: Table
    type: ChangeType
    new: Optional[Row] = None
    old: Optional[Row] = None

    @model_validator(mode="before")
    @classmethod
    def coerce_rows(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        model = ROW_MODELS[Table(data["table"])]
        data = dict(data)
        for key in ("new", "old"):
            value = data.get(key)
            if isinstance(value, dict):
                data[key] = model.model_validate(value)
        return data

    @property
    def record(self) -> Optional[Row]:
        """The row the event is about (``old`` for deletes)."""
        return self.old if self.type == ChangeType.DELETE else self.new


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Principal:
    id: str
    roles: frozenset[Role] = field(default_factory=frozenset)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def sees_all_rides(self) -> bool:
        return bool(self.roles & FLEET_ROLES)

    @property
    def can_request_rides(self) -> bool:
        return Role.RIDER in self.roles or Role.EMPLOYEE in self.roles

    @property
    def can_accept_rides(self) -> bool:
        return Role.DRIVER in self.roles

    @property
    def can_view_activity(self) -> bool:
        return bool(self.roles & AUDIT_ROLES)

    def can_see(self, ride: RideRequest) -> bool:
        return self.sees_all_rides or ride.rider_id == self.id
