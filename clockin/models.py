from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clockin.db import Base


def _new_id() -> str:
    return str(uuid4())


class AttendanceStatus(str, enum.Enum):
    ON_TIME = "ON_TIME"
    LATE = "LATE"


class AttendanceMethod(str, enum.Enum):
    MANUAL = "MANUAL"
    QR = "QR"
    NFC = "NFC"


class AttendanceAction(str, enum.Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class AuditActorType(str, enum.Enum):
    AGENCY = "AGENCY"
    USER = "USER"
    SYSTEM = "SYSTEM"


class WorkSchedule(Base):
    __tablename__ = "work_schedules"
    __table_args__ = (
        UniqueConstraint("agency_id", "name", name="uq_work_schedules_agency_name"),
        Index(
            "uq_work_schedules_agency_default",
            "agency_id",
            unique=True,
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    days_of_week: Mapped[list[int]] = mapped_column(ARRAY(Integer), nullable=False)
    entry_time: Mapped[str] = mapped_column(String(5), nullable=False)
    exit_time: Mapped[str] = mapped_column(String(5), nullable=False)
    grace_period_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10,
        server_default=text("10"),
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assigned_users: Mapped[list[WorkScheduleUser]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
    )

    @property
    def assigned_user_ids(self) -> list[str]:
        return [item.user_id for item in (self.assigned_users or [])]


class WorkScheduleUser(Base):
    __tablename__ = "work_schedule_users"
    __table_args__ = (
        UniqueConstraint("schedule_id", "user_id", name="uq_work_schedule_users_schedule_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[str] = mapped_column(
        ForeignKey("work_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    schedule: Mapped[WorkSchedule] = relationship(back_populates="assigned_users")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_attendance_records_user_date"),
        Index("ix_attendance_records_agency_date", "agency_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    check_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    schedule_entry_time: Mapped[str] = mapped_column(String(5), nullable=False)
    schedule_exit_time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[AttendanceStatus | None] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=True,
    )
    check_out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    method_in: Mapped[AttendanceMethod] = mapped_column(
        Enum(AttendanceMethod, name="attendance_method"),
        nullable=False,
    )
    method_out: Mapped[AttendanceMethod | None] = mapped_column(
        Enum(AttendanceMethod, name="attendance_method"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
