"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ridesync.domain.enums import ActionType, RideStatus


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=500)
    destination: str = Field(..., min_length=1, max_length=500)
    passenger_count: int = Field(1, ge=1)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    pickup_location: str
    destination: str
    passenger_count: int
    status: RideStatus
    created_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MutationResponse(BaseModel):
    applied: bool
    ride: Optional[RideResponse] = None


class ActivityResponse(BaseModel):
    id: str
    action_type: ActionType
    action_description: str
    ride_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RiderDashboardResponse(BaseModel):
    active: list[RideResponse] = []
    past: list[RideResponse] = []


class DriverDashboardResponse(BaseModel):
    new_requests: list[RideResponse] = []
    my_active: list[RideResponse] = []
    completed_today: list[RideResponse] = []


class EmployerDashboardResponse(BaseModel):
    today_count: int
    active_count: int
    completed_count: int
    cancelled_count: int
    recent_activity: list[ActivityResponse] = []


class AdminDashboardResponse(BaseModel):
    total: int
    breakdown: dict[str, int]
    recent_active: list[RideResponse] = []
    recent_activity: list[ActivityResponse] = []


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
