"""Unit tests for derived ride views and dashboard summaries."""

from datetime import datetime, timedelta, timezone

from ridesync.domain import views
from ridesync.domain.entities import ActivityLogEntry, Principal, RideRequest
from ridesync.domain.enums import ActionType, RideStatus, Role

UTC = timezone.utc
NOW = datetime(2026, 10, 19, 15, 0, tzinfo=UTC)
YESTERDAY = NOW - timedelta(days=1)


def ride(ride_id, status, rider="rider-1", driver=None, created=NOW, completed=None):
    values = {
        "id": ride_id,
        "rider_id": rider,
        "pickup_location": "A",
        "destination": "B",
        "status": status,
        "created_at": created,
    }
    if status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED):
        values.update(driver_id=driver or "driver-a", accepted_at=created)
    if status == RideStatus.COMPLETED:
        values["completed_at"] = completed or created
    return RideRequest(**values)


RIDES = [
    ride("r1", RideStatus.REQUESTED),
    ride("r2", RideStatus.ACCEPTED, driver="driver-a"),
    ride("r3", RideStatus.IN_PROGRESS, driver="driver-b", rider="rider-2"),
    ride("r4", RideStatus.COMPLETED, driver="driver-a", created=YESTERDAY, completed=NOW),
    ride("r5", RideStatus.CANCELLED, rider="rider-2", created=YESTERDAY),
    ride("r6", RideStatus.COMPLETED, driver="driver-a", created=YESTERDAY),
]


def ids(rides):
    return [r.id for r in rides]


class TestViews:
    def test_active(self):
        assert ids(views.active(RIDES)) == ["r1", "r2", "r3"]

    def test_completed_and_cancelled(self):
        assert ids(views.completed(RIDES)) == ["r4", "r6"]
        assert ids(views.cancelled(RIDES)) == ["r5"]
        assert ids(views.history(RIDES)) == ["r4", "r5", "r6"]

    def test_open_requests(self):
        assert ids(views.open_requests(RIDES)) == ["r1"]

    def test_driver_active_only_counts_own_underway_rides(self):
        assert ids(views.driver_active(RIDES, "driver-a")) == ["r2"]
        assert ids(views.driver_active(RIDES, "driver-b")) == ["r3"]

    def test_today_uses_local_date_of_created_at(self):
        assert ids(views.today(RIDES, now=NOW, tz=UTC)) == ["r1", "r2", "r3"]

    def test_completed_today_uses_completion_time(self):
        assert ids(views.completed_today(RIDES, now=NOW, tz=UTC)) == ["r4"]

    def test_status_breakdown_covers_every_status(self):
        counts = views.status_breakdown(RIDES)
        assert counts == {
            RideStatus.REQUESTED: 1,
            RideStatus.ACCEPTED: 1,
            RideStatus.IN_PROGRESS: 1,
            RideStatus.COMPLETED: 2,
            RideStatus.CANCELLED: 1,
        }
        assert views.status_breakdown([])[RideStatus.REQUESTED] == 0


class TestDashboards:
    def test_rider_sees_own_active_and_past(self):
        data = views.dashboard_for(
            Role.RIDER, Principal("rider-2", frozenset({Role.RIDER})), RIDES
        )
        assert ids(data["active"]) == ["r3"]
        assert ids(data["past"]) == ["r5"]

    def test_driver_dashboard(self):
        data = views.dashboard_for(
            Role.DRIVER, Principal("driver-a", frozenset({Role.DRIVER})), RIDES, now=NOW
        )
        assert ids(data["new_requests"]) == ["r1"]
        assert ids(data["my_active"]) == ["r2"]

    def test_employer_counts(self):
        entry = ActivityLogEntry(
            id="a1",
            action_type=ActionType.RIDE_REQUESTED,
            action_description="Ride requested",
            created_at=NOW,
        )
        data = views.dashboard_for(
            Role.EMPLOYER,
            Principal("employer-1", frozenset({Role.EMPLOYER})),
            RIDES,
            [entry],
            now=NOW,
        )
        assert data["active_count"] == 3
        assert data["completed_count"] == 2
        assert data["cancelled_count"] == 1
        assert data["recent_activity"] == [entry]

    def test_admin_breakdown(self):
        data = views.dashboard_for(
            Role.ADMIN, Principal("admin-1", frozenset({Role.ADMIN})), RIDES
        )
        assert data["total"] == 6
        assert data["breakdown"]["completed"] == 2
        assert ids(data["recent_active"]) == ["r1", "r2", "r3"]
