from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clockin.errors import ApiError, upstream_unavailable
from clockin.models import AttendanceAction, AttendanceMethod, AttendanceRecord
from clockin.services.qr_tokens import verify_qr_token
from clockin.services.schedules import ApplicableSchedule, ScheduleResolver
from clockin.services.time_utils import (
    calendar_date,
    classify_check_in,
    format_for_log,
    normalize_ts,
    parse_time_of_day,
)
from clockin.services.user_validator import UserValidationStatus, UserValidator

logger = logging.getLogger("clockin.attendance")

TODAY_NOT_STARTED = "NOT_STARTED"
TODAY_IN_PROGRESS = "IN_PROGRESS"
TODAY_FINISHED = "FINISHED"


def _duplicate_check_in() -> ApiError:
    return ApiError(
        status_code=409,
        code="DUPLICATE_CHECK_IN",
        message="Attendance has already been checked in for today.",
    )


def _duplicate_check_out() -> ApiError:
    return ApiError(
        status_code=409,
        code="DUPLICATE_CHECK_OUT",
        message="Attendance has already been checked out for today.",
    )


class AttendanceRecordStore(Protocol):
    def get_for_user_day(self, *, user_id: str, day: date) -> AttendanceRecord | None: ...

    def create(self, record: AttendanceRecord) -> AttendanceRecord: ...

    def save_check_out(
        self,
        record: AttendanceRecord,
        *,
        check_out_time: datetime,
        method: AttendanceMethod,
        notes: str | None,
    ) -> AttendanceRecord: ...


class SqlAttendanceRecordStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_for_user_day(self, *, user_id: str, day: date) -> AttendanceRecord | None:
        return self._db.scalar(
            select(AttendanceRecord).where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.date == day,
            )
        )

    def create(self, record: AttendanceRecord) -> AttendanceRecord:
        self._db.add(record)
        try:
            self._db.commit()
        except IntegrityError as exc:
            # a concurrent check-in won the (user_id, date) unique constraint
            self._db.rollback()
            logger.warning(
                "attendance_check_in_race_lost",
                extra={"user_id": record.user_id, "agency_id": record.agency_id, "date": format_for_log(record.date)},
            )
            raise _duplicate_check_in() from exc
        self._db.refresh(record)
        return record

    def save_check_out(
        self,
        record: AttendanceRecord,
        *,
        check_out_time: datetime,
        method: AttendanceMethod,
        notes: str | None,
    ) -> AttendanceRecord:
        values: dict[str, object] = {"check_out_time": check_out_time, "method_out": method}
        if notes is not None:
            values["notes"] = notes
        result = self._db.execute(
            update(AttendanceRecord)
            .where(
                AttendanceRecord.id == record.id,
                AttendanceRecord.check_out_time.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # a concurrent check-out closed the record first
            self._db.rollback()
            logger.warning(
                "attendance_check_out_race_lost",
                extra={"user_id": record.user_id, "agency_id": record.agency_id, "date": format_for_log(record.date)},
            )
            raise _duplicate_check_out()
        self._db.commit()
        self._db.refresh(record)
        return record


@dataclass(frozen=True, slots=True)
class AttendanceMarker:
    """Check-in/check-out state machine for one user and one calendar day.

    Collaborators are injected per request. The record store is only
    written at the very end, so a rejected attempt leaves nothing behind.
    """

    user_validator: UserValidator
    schedule_resolver: ScheduleResolver
    records: AttendanceRecordStore

    def _ensure_user_valid(self, *, user_id: str, agency_id: str, log_context: dict[str, object]) -> None:
        result = self.user_validator.validate(user_id=user_id, agency_id=agency_id)
        if result.is_valid:
            return
        if result.status == UserValidationStatus.UNAVAILABLE:
            logger.error("user_validation_unavailable", extra={**log_context, "detail": result.detail})
            raise upstream_unavailable("user", "User service is unavailable. Please retry later.")
        logger.info("attendance_user_invalid", extra=log_context)
        raise ApiError(
            status_code=400,
            code="USER_INVALID",
            message="User is not active in this agency.",
        )

    def _resolve_schedule(
        self,
        *,
        user_id: str,
        agency_id: str,
        day: date,
        log_context: dict[str, object],
    ) -> ApplicableSchedule:
        schedule = self.schedule_resolver.resolve(agency_id=agency_id, user_id=user_id, day=day)
        if schedule is None:
            logger.info("attendance_no_applicable_schedule", extra=log_context)
            raise ApiError(
                status_code=400,
                code="NO_APPLICABLE_SCHEDULE",
                message="No work schedule applies to this user today.",
            )
        return schedule

    def mark_attendance(
        self,
        *,
        user_id: str,
        agency_id: str,
        method: AttendanceMethod,
        action: AttendanceAction,
        now: datetime | None = None,
        notes: str | None = None,
    ) -> AttendanceRecord:
        instant = normalize_ts(now)
        day = calendar_date(instant)
        log_context: dict[str, object] = {
            "user_id": user_id,
            "agency_id": agency_id,
            "action": action.value,
            "method": method.value,
            "date": day.isoformat(),
        }

        self._ensure_user_valid(user_id=user_id, agency_id=agency_id, log_context=log_context)
        schedule = self._resolve_schedule(user_id=user_id, agency_id=agency_id, day=day, log_context=log_context)

        entry_at = parse_time_of_day(schedule.entry_time, instant)
        exit_at = parse_time_of_day(schedule.exit_time, instant)
        if entry_at is None or exit_at is None:
            logger.error(
                "schedule_configuration_invalid",
                extra={
                    **log_context,
                    "schedule_id": schedule.id,
                    "entry_time": schedule.entry_time,
                    "exit_time": schedule.exit_time,
                },
            )
            raise ApiError(
                status_code=500,
                code="SCHEDULE_CONFIGURATION_ERROR",
                message="The applicable work schedule has invalid entry or exit times.",
            )

        existing = self.records.get_for_user_day(user_id=user_id, day=day)

        if action == AttendanceAction.CHECK_IN:
            if existing is not None:
                raise _duplicate_check_in()
            status = classify_check_in(instant, entry_at, schedule.grace_period_minutes)
            record = self.records.create(
                AttendanceRecord(
                    user_id=user_id,
                    agency_id=agency_id,
                    date=day,
                    check_in_time=instant,
                    schedule_entry_time=schedule.entry_time,
                    schedule_exit_time=schedule.exit_time,
                    status=status,
                    method_in=method,
                    notes=notes,
                )
            )
            logger.info(
                "attendance_check_in_recorded",
                extra={
                    **log_context,
                    "record_id": record.id,
                    "schedule_id": schedule.id,
                    "status": status.value if status else None,
                },
            )
            return record

        if existing is None:
            raise ApiError(
                status_code=400,
                code="CHECK_IN_REQUIRED",
                message="A check-in is required before checking out.",
            )
        if existing.check_out_time is not None:
            raise _duplicate_check_out()

        record = self.records.save_check_out(existing, check_out_time=instant, method=method, notes=notes)
        logger.info(
            "attendance_check_out_recorded",
            extra={**log_context, "record_id": record.id, "schedule_id": schedule.id},
        )
        return record

    def mark_by_qr(
        self,
        *,
        user_id: str,
        token: str,
        requested_action: AttendanceAction,
        now: datetime | None = None,
        notes: str | None = None,
    ) -> AttendanceRecord:
        instant = normalize_ts(now)
        claims = verify_qr_token(token, now=instant)
        if claims.action != requested_action:
            logger.info(
                "attendance_qr_action_mismatch",
                extra={
                    "user_id": user_id,
                    "agency_id": claims.agency_id,
                    "token_action": claims.action.value,
                    "requested_action": requested_action.value,
                },
            )
            raise ApiError(
                status_code=400,
                code="QR_ACTION_MISMATCH",
                message="This QR code is not valid for the requested action.",
            )
        return self.mark_attendance(
            user_id=user_id,
            agency_id=claims.agency_id,
            method=AttendanceMethod.QR,
            action=requested_action,
            now=instant,
            notes=notes,
        )


def list_attendance_history(
    db: Session,
    *,
    agency_id: str | None,
    user_id: str | None,
    start_date: date,
    end_date: date,
) -> list[AttendanceRecord]:
    if not agency_id and not user_id:
        raise ApiError(
            status_code=400,
            code="HISTORY_SCOPE_REQUIRED",
            message="Either an agency or a user must be given.",
        )
    if end_date < start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="end_date must be on or after start_date.",
        )

    stmt = select(AttendanceRecord).where(
        AttendanceRecord.date >= start_date,
        AttendanceRecord.date <= end_date,
    )
    if agency_id:
        stmt = stmt.where(AttendanceRecord.agency_id == agency_id)
    if user_id:
        stmt = stmt.where(AttendanceRecord.user_id == user_id)
    stmt = stmt.order_by(AttendanceRecord.date.desc(), AttendanceRecord.check_in_time.desc())
    return list(db.scalars(stmt).all())


def get_today_record(db: Session, *, user_id: str, now: datetime | None = None) -> AttendanceRecord | None:
    return SqlAttendanceRecordStore(db).get_for_user_day(user_id=user_id, day=calendar_date(normalize_ts(now)))


def today_status(record: AttendanceRecord | None) -> str:
    if record is None:
        return TODAY_NOT_STARTED
    if record.check_out_time is None:
        return TODAY_IN_PROGRESS
    return TODAY_FINISHED
