"""
SQLAlchemy ORM models.

Tables
------
* ``user_roles``     -- role membership per principal (managed out-of-band)
* ``ride_requests``  -- ride requests through their lifecycle
* ``activity_logs``  -- append-only audit trail written beside ride changes

Indexes
-------
* **B-Tree** on ``rider_id``, ``driver_id``, ``status`` for the scoped
  bulk fetch and the conditional accept.
* **B-Tree** on ``created_at`` for newest-first reads of both tables.
"""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base
from ridesync.domain.entities import utcnow
from ridesync.domain.enums import ActionType, RideStatus, Role, Table


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls, name: str) -> Enum:
    # Persist the lower-case values the rest of the system speaks.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    role = Column(_enum(Role, "app_role"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        Index("idx_user_roles_user", "user_id"),
    )


class RideRequestModel(Base):
    __tablename__ = "ride_requests"

    id = Column(String(36), primary_key=True, default=_new_id)
    rider_id = Column(String(36), nullable=False)
    driver_id = Column(String(36), nullable=True)

    pickup_location = Column(Text, nullable=False)
    destination = Column(Text, nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)

    status = Column(
        _enum(RideStatus, "ride_status"),
        default=RideStatus.REQUESTED,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("passenger_count > 0", name="ck_ride_requests_passengers"),
        Index("idx_ride_requests_rider", "rider_id"),
        Index("idx_ride_requests_driver", "driver_id"),
        Index("idx_ride_requests_status", "status"),
        Index("idx_ride_requests_created", "created_at"),
    )


class ActivityLogModel(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    action_type = Column(_enum(ActionType, "activity_action"), nullable=False)
    action_description = Column(Text, nullable=False)
    ride_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_activity_logs_created", "created_at"),
        Index("idx_activity_logs_ride", "ride_id"),
    )


TABLE_MODELS = {
    Table.RIDE_REQUESTS: RideRequestModel,
    Table.ACTIVITY_LOGS: ActivityLogModel,
}
