"""Initial attendance and schedule schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_status = postgresql.ENUM(
    "ON_TIME",
    "LATE",
    name="attendance_status",
    create_type=False,
)
attendance_method = postgresql.ENUM(
    "MANUAL",
    "QR",
    "NFC",
    name="attendance_method",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "AGENCY",
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    attendance_status.create(bind, checkfirst=True)
    attendance_method.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "work_schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("agency_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("days_of_week", postgresql.ARRAY(sa.Integer()), nullable=False),
        sa.Column("entry_time", sa.String(length=5), nullable=False),
        sa.Column("exit_time", sa.String(length=5), nullable=False),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("agency_id", "name", name="uq_work_schedules_agency_name"),
        sa.CheckConstraint("grace_period_minutes >= 0", name="ck_work_schedules_grace_non_negative"),
    )
    op.create_index("ix_work_schedules_agency_id", "work_schedules", ["agency_id"], unique=False)
    op.create_index(
        "uq_work_schedules_agency_default",
        "work_schedules",
        ["agency_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "work_schedule_users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("schedule_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["schedule_id"], ["work_schedules.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("schedule_id", "user_id", name="uq_work_schedule_users_schedule_user"),
    )
    op.create_index("ix_work_schedule_users_schedule_id", "work_schedule_users", ["schedule_id"], unique=False)
    op.create_index("ix_work_schedule_users_user_id", "work_schedule_users", ["user_id"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("agency_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("schedule_entry_time", sa.String(length=5), nullable=False),
        sa.Column("schedule_exit_time", sa.String(length=5), nullable=False),
        sa.Column("status", attendance_status, nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("method_in", attendance_method, nullable=False),
        sa.Column("method_out", attendance_method, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("user_id", "date", name="uq_attendance_records_user_date"),
    )
    op.create_index("ix_attendance_records_user_id", "attendance_records", ["user_id"], unique=False)
    op.create_index("ix_attendance_records_agency_id", "attendance_records", ["agency_id"], unique=False)
    op.create_index(
        "ix_attendance_records_agency_date",
        "attendance_records",
        ["agency_id", "date"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_attendance_records_agency_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_agency_id", table_name="attendance_records")
    op.drop_index("ix_attendance_records_user_id", table_name="attendance_records")
    op.drop_table("attendance_records")

    op.drop_index("ix_work_schedule_users_user_id", table_name="work_schedule_users")
    op.drop_index("ix_work_schedule_users_schedule_id", table_name="work_schedule_users")
    op.drop_table("work_schedule_users")

    op.drop_index("uq_work_schedules_agency_default", table_name="work_schedules")
    op.drop_index("ix_work_schedules_agency_id", table_name="work_schedules")
    op.drop_table("work_schedules")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    attendance_method.drop(bind, checkfirst=True)
    attendance_status.drop(bind, checkfirst=True)
