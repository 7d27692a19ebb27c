"""Initial schema: role membership, ride requests and the activity log.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

APP_ROLES = ("rider", "driver", "employer", "employee", "admin")
RIDE_STATUSES = ("requested", "accepted", "in_progress", "completed", "cancelled")
ACTIVITY_ACTIONS = (
    "ride_requested",
    "ride_accepted",
    "ride_started",
    "ride_completed",
    "ride_cancelled",
)


def upgrade() -> None:
    # ── user_roles ────────────────────────────────────────────────────
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("role", sa.Enum(*APP_ROLES, name="app_role"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("idx_user_roles_user", "user_roles", ["user_id"])

    # ── ride_requests ─────────────────────────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("rider_id", sa.String(36), nullable=False),
        sa.Column("driver_id", sa.String(36), nullable=True),
        sa.Column("pickup_location", sa.Text, nullable=False),
        sa.Column("destination", sa.Text, nullable=False),
        sa.Column("passenger_count", sa.Integer, default=1, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUSES, name="ride_status"),
            default="requested",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "passenger_count > 0", name="ck_ride_requests_passengers"
        ),
    )
    op.create_index("idx_ride_requests_rider", "ride_requests", ["rider_id"])
    op.create_index("idx_ride_requests_driver", "ride_requests", ["driver_id"])
    op.create_index("idx_ride_requests_status", "ride_requests", ["status"])
    op.create_index("idx_ride_requests_created", "ride_requests", ["created_at"])

    # ── activity_logs ─────────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "action_type",
            sa.Enum(*ACTIVITY_ACTIONS, name="activity_action"),
            nullable=False,
        ),
        sa.Column("action_description", sa.Text, nullable=False),
        sa.Column("ride_id", sa.String(36), nullable=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_activity_logs_created", "activity_logs", ["created_at"])
    op.create_index("idx_activity_logs_ride", "activity_logs", ["ride_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("ride_requests")
    op.drop_table("user_roles")
    op.execute("DROP TYPE IF EXISTS activity_action")
    op.execute("DROP TYPE IF EXISTS ride_status")
    op.execute("DROP TYPE IF EXISTS app_role")
