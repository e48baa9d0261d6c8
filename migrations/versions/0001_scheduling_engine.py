"""scheduling engine tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

SCHEDULE_TYPE = ("GROUP_CLASS", "INDIVIDUAL", "OTHER")
SCHEDULE_STATUS = ("PLANNED", "CANCELLED")
BOOKING_STATUS = ("PLANNED", "CONFIRMED", "COMPLETED", "CANCELLED")
SUBSCRIPTION_STATUS = ("ACTIVE", "EXPIRED", "FROZEN")
ATTENDANCE_STATUS = ("PRESENT", "ABSENT", "EXCUSED")


def _enum(values, name):
    # на SQLite это просто VARCHAR; на PostgreSQL тип создаётся один раз в upgrade()
    return postgresql.ENUM(*values, name=name, create_type=False)


ENUMS = {
    "scheduletype": _enum(SCHEDULE_TYPE, "scheduletype"),
    "schedulestatus": _enum(SCHEDULE_STATUS, "schedulestatus"),
    "bookingstatus": _enum(BOOKING_STATUS, "bookingstatus"),
    "subscriptionstatus": _enum(SUBSCRIPTION_STATUS, "subscriptionstatus"),
    "attendancestatus": _enum(ATTENDANCE_STATUS, "attendancestatus"),
}


def upgrade():
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in ENUMS.values():
            enum.create(bind, checkfirst=True)

    op.create_table(
        "group",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("max_participants", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "teacher",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
    )
    op.create_table(
        "room",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("number", sa.String(length=50)),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_coworking", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "client",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=50)),
    )

    for table in ("rental", "event"):
        extra = (
            [sa.Column("client_name", sa.String(length=255))] if table == "rental"
            else [sa.Column("name", sa.String(length=255), nullable=False),
                  sa.Column("event_type", sa.String(length=100))]
        )
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            *extra,
            sa.Column("room_id", sa.Integer(), sa.ForeignKey("room.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("status", ENUMS["bookingstatus"], nullable=False),
        )
        op.create_index(f"ix_{table}_date_room", table, ["date", "room_id"])

    op.create_table(
        "subscription",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("group.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", ENUMS["subscriptionstatus"], nullable=False),
        sa.Column("valid_month", sa.String(length=7)),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column("remaining_visits", sa.Integer()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_subscription_client_id", "subscription", ["client_id"])
    op.create_index("ix_subscription_group_id", "subscription", ["group_id"])
    op.create_index("ix_subscription_group_status", "subscription", ["group_id", "status"])

    op.create_table(
        "schedule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("group.id", ondelete="RESTRICT")),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teacher.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("room.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("type", ENUMS["scheduletype"], nullable=False),
        sa.Column("status", ENUMS["schedulestatus"], nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_compensated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancellation_note", sa.Text()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("start_time < end_time", name="ck_schedule_time_window"),
    )
    op.create_index("ix_schedule_date", "schedule", ["date"])
    op.create_index("ix_schedule_group_id", "schedule", ["group_id"])
    op.create_index("ix_schedule_date_room", "schedule", ["date", "room_id"])
    op.create_index("ix_schedule_date_teacher", "schedule", ["date", "teacher_id"])

    op.create_table(
        "attendance",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("schedule_id", sa.Integer(), sa.ForeignKey("schedule.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", ENUMS["attendancestatus"], nullable=False),
        sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscription.id", ondelete="SET NULL")),
        sa.Column("subscription_deducted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("schedule_id", "client_id", name="uq_attendance_schedule_client"),
    )
    op.create_index("ix_attendance_schedule_id", "attendance", ["schedule_id"])


def downgrade():
    op.drop_table("attendance")
    op.drop_table("schedule")
    op.drop_table("subscription")
    op.drop_table("event")
    op.drop_table("rental")
    op.drop_table("client")
    op.drop_table("room")
    op.drop_table("teacher")
    op.drop_table("group")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in ENUMS.values():
            enum.drop(bind, checkfirst=True)
