from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clockin.models import AttendanceAction, AttendanceMethod, AttendanceStatus
from clockin.services.time_utils import is_valid_time_of_day


def _strip_name(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


def _validate_time_of_day(value: str | None) -> str | None:
    if value is None:
        return value
    if not is_valid_time_of_day(value):
        raise ValueError("time must be a 24-hour HH:MM value")
    return value


def _validate_days_of_week(value: list[int] | None) -> list[int] | None:
    if value is None:
        return value
    for day in value:
        if day < 1 or day > 7:
            raise ValueError("days_of_week values must be between 1 (Monday) and 7 (Sunday)")
    if len(set(value)) != len(value):
        raise ValueError("days_of_week must not contain repeated values")
    return value


class WorkScheduleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    days_of_week: list[int] = Field(min_length=1, max_length=7)
    entry_time: str
    exit_time: str
    grace_period_minutes: int = Field(default=10, ge=0)
    is_default: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: object) -> object:
        return _strip_name(value)

    @field_validator("entry_time", "exit_time")
    @classmethod
    def _time_of_day(cls, value: str) -> str:
        return _validate_time_of_day(value) or value

    @field_validator("days_of_week")
    @classmethod
    def _unique_days(cls, value: list[int]) -> list[int]:
        return _validate_days_of_week(value) or []


class WorkScheduleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    days_of_week: list[int] | None = Field(default=None, min_length=1, max_length=7)
    entry_time: str | None = None
    exit_time: str | None = None
    grace_period_minutes: int | None = Field(default=None, ge=0)
    is_default: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: object) -> object:
        return _strip_name(value)

    @field_validator("entry_time", "exit_time")
    @classmethod
    def _time_of_day(cls, value: str | None) -> str | None:
        return _validate_time_of_day(value)

    @field_validator("days_of_week")
    @classmethod
    def _unique_days(cls, value: list[int] | None) -> list[int] | None:
        return _validate_days_of_week(value)

    @model_validator(mode="after")
    def _require_changes(self) -> "WorkScheduleUpdate":
        if not self.model_fields_set:
            raise ValueError("Request body must contain at least one field")
        for field_name in self.model_fields_set:
            if getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null")
        return self


class WorkScheduleRead(BaseModel):
    id: str
    agency_id: str
    name: str
    days_of_week: list[int]
    entry_time: str
    exit_time: str
    grace_period_minutes: int
    is_default: bool
    assigned_user_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleUsersAssignRequest(BaseModel):
    user_ids: list[UUID] = Field(default_factory=list)


class ManualAttendanceRequest(BaseModel):
    user_id: UUID
    action: AttendanceAction
    notes: str | None = Field(default=None, max_length=1000)
    method: AttendanceMethod = AttendanceMethod.MANUAL

    @field_validator("method")
    @classmethod
    def _agency_method(cls, value: AttendanceMethod) -> AttendanceMethod:
        # QR marks must go through a signed token
        if value == AttendanceMethod.QR:
            raise ValueError("method must be MANUAL or NFC")
        return value


class QrAttendanceRequest(BaseModel):
    token: str = Field(min_length=1)
    action: AttendanceAction


class QrGenerateRequest(BaseModel):
    action: AttendanceAction


class QrGenerateResponse(BaseModel):
    url: str
    token: str
    action: AttendanceAction
    issued_at: datetime
    expires_at: datetime


class AttendanceRecordRead(BaseModel):
    id: str
    user_id: str
    agency_id: str
    date: date
    check_in_time: datetime
    check_out_time: datetime | None = None
    status: AttendanceStatus | None = None
    method_in: AttendanceMethod
    method_out: AttendanceMethod | None = None
    schedule_entry_time: str
    schedule_exit_time: str
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceMarkResponse(BaseModel):
    ok: bool = True
    action: AttendanceAction
    record: AttendanceRecordRead


class TodayStatusResponse(BaseModel):
    today_status: Literal["NOT_STARTED", "IN_PROGRESS", "FINISHED"]
    record: AttendanceRecordRead | None = None
    message: str | None = None
