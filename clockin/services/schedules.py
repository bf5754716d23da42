from __future__ import annotations

import http.client
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from clockin.errors import ApiError, upstream_unavailable
from clockin.models import WorkSchedule, WorkScheduleUser
from clockin.schemas import WorkScheduleCreate, WorkScheduleUpdate
from clockin.services.time_utils import format_for_log, iso_weekday
from clockin.settings import get_schedule_service_base_url, get_upstream_timeout_seconds

logger = logging.getLogger("clockin.schedules")

APPLICABLE_SCHEDULE_PATH = "/api/schedules/applicable"


@dataclass(frozen=True, slots=True)
class ApplicableSchedule:
    id: str
    agency_id: str
    name: str
    days_of_week: tuple[int, ...]
    entry_time: str
    exit_time: str
    grace_period_minutes: int
    is_default: bool
    assigned_user_ids: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, schedule: WorkSchedule) -> ApplicableSchedule:
        return cls(
            id=str(schedule.id),
            agency_id=schedule.agency_id,
            name=schedule.name,
            days_of_week=tuple(schedule.days_of_week or ()),
            entry_time=schedule.entry_time,
            exit_time=schedule.exit_time,
            grace_period_minutes=int(schedule.grace_period_minutes or 0),
            is_default=bool(schedule.is_default),
            assigned_user_ids=tuple(schedule.assigned_user_ids),
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ApplicableSchedule:
        return cls(
            id=str(payload["id"]),
            agency_id=str(payload["agency_id"]),
            name=str(payload.get("name") or ""),
            days_of_week=tuple(int(item) for item in payload.get("days_of_week") or ()),
            entry_time=str(payload["entry_time"]),
            exit_time=str(payload["exit_time"]),
            grace_period_minutes=int(payload.get("grace_period_minutes") or 0),
            is_default=bool(payload.get("is_default")),
            assigned_user_ids=tuple(str(item) for item in payload.get("assigned_user_ids") or ()),
        )


class ScheduleResolver(Protocol):
    def resolve(self, *, agency_id: str, user_id: str | None, day: date) -> ApplicableSchedule | None: ...


def _recency_key(schedule: WorkSchedule) -> tuple[float, str]:
    updated_at = schedule.updated_at
    return (updated_at.timestamp() if isinstance(updated_at, datetime) else 0.0, str(schedule.id))


def select_applicable_schedule(
    schedules: Iterable[WorkSchedule],
    *,
    user_id: str | None,
    weekday: int,
) -> WorkSchedule | None:
    """Pick the schedule governing ``user_id`` on ``weekday``.

    A schedule the user is explicitly assigned to wins over the agency
    default. Several user-specific matches are ordered by the most recent
    ``updated_at`` and then by id, so the outcome is deterministic.
    """
    covering = [item for item in schedules if weekday in (item.days_of_week or [])]

    if user_id:
        user_specific = [item for item in covering if user_id in item.assigned_user_ids]
        if user_specific:
            return max(user_specific, key=_recency_key)

    defaults = [item for item in covering if item.is_default]
    if defaults:
        return max(defaults, key=_recency_key)
    return None


def list_agency_schedules(db: Session, *, agency_id: str) -> list[WorkSchedule]:
    return list(
        db.scalars(
            select(WorkSchedule)
            .options(selectinload(WorkSchedule.assigned_users))
            .where(WorkSchedule.agency_id == agency_id)
            .order_by(WorkSchedule.is_default.desc(), WorkSchedule.name.asc())
        ).all()
    )


def resolve_applicable_schedule(
    db: Session,
    *,
    agency_id: str,
    user_id: str | None,
    day: date,
) -> WorkSchedule | None:
    weekday = iso_weekday(day)
    schedule = select_applicable_schedule(
        list_agency_schedules(db, agency_id=agency_id),
        user_id=user_id,
        weekday=weekday,
    )
    if schedule is None:
        logger.warning(
            "applicable_schedule_not_found",
            extra={"agency_id": agency_id, "user_id": user_id, "date": format_for_log(day), "weekday": weekday},
        )
        return None

    logger.info(
        "applicable_schedule_found",
        extra={
            "agency_id": agency_id,
            "user_id": user_id,
            "schedule_id": schedule.id,
            "is_default": schedule.is_default,
            "weekday": weekday,
        },
    )
    return schedule


class DbScheduleResolver:
    def __init__(self, db: Session) -> None:
        self._db = db

    def resolve(self, *, agency_id: str, user_id: str | None, day: date) -> ApplicableSchedule | None:
        schedule = resolve_applicable_schedule(self._db, agency_id=agency_id, user_id=user_id, day=day)
        if schedule is None:
            return None
        return ApplicableSchedule.from_model(schedule)


class HttpScheduleResolver:
    """Resolver backed by a remote schedule service.

    A 404 answer means no schedule applies. Every other failure, including
    timeouts and unreadable bodies, is an upstream availability error.
    """

    def __init__(self, base_url: str, *, timeout_seconds: float | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds if timeout_seconds is not None else get_upstream_timeout_seconds()

    def _build_url(self, *, agency_id: str, user_id: str | None, day: date) -> str:
        params = {"agency_id": agency_id, "date": day.isoformat()}
        if user_id:
            params["user_id"] = user_id
        return f"{self._base_url}{APPLICABLE_SCHEDULE_PATH}?{urllib_parse.urlencode(params)}"

    def resolve(self, *, agency_id: str, user_id: str | None, day: date) -> ApplicableSchedule | None:
        url = self._build_url(agency_id=agency_id, user_id=user_id, day=day)
        request = urllib_request.Request(url=url, method="GET", headers={"Accept": "application/json"})
        log_context = {"agency_id": agency_id, "user_id": user_id, "date": day.isoformat()}
        try:
            with urllib_request.urlopen(request, timeout=self._timeout_seconds) as response:
                raw = response.read().decode("utf-8", errors="ignore")
            payload = json.loads(raw)
            if payload is None:
                return None
            return ApplicableSchedule.from_payload(payload)
        except urllib_error.HTTPError as exc:
            if exc.code == 404:
                return None
            logger.error("schedule_service_http_error", extra={**log_context, "status_code": exc.code})
            raise upstream_unavailable("schedule", f"Schedule service answered with HTTP {exc.code}.") from exc
        except (urllib_error.URLError, http.client.HTTPException, TimeoutError, OSError) as exc:
            logger.error("schedule_service_unreachable", extra={**log_context, "error": str(exc)})
            raise upstream_unavailable("schedule", "Schedule service could not be reached.") from exc
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("schedule_service_bad_payload", extra={**log_context, "error": str(exc)})
            raise upstream_unavailable("schedule", "Schedule service returned an unreadable schedule.") from exc


def build_schedule_resolver(db: Session) -> ScheduleResolver:
    base_url = get_schedule_service_base_url()
    if base_url:
        return HttpScheduleResolver(base_url)
    return DbScheduleResolver(db)


def _schedule_not_found(schedule_id: str) -> ApiError:
    return ApiError(
        status_code=404,
        code="SCHEDULE_NOT_FOUND",
        message=f"Schedule {schedule_id} was not found.",
    )


def _name_conflict(name: str | None) -> ApiError:
    return ApiError(
        status_code=409,
        code="SCHEDULE_NAME_CONFLICT",
        message=f"A schedule named '{name}' already exists for this agency.",
    )


def _default_required(message: str) -> ApiError:
    return ApiError(status_code=400, code="DEFAULT_SCHEDULE_REQUIRED", message=message)


def _clear_agency_default(db: Session, *, agency_id: str) -> None:
    db.execute(
        update(WorkSchedule)
        .where(WorkSchedule.agency_id == agency_id, WorkSchedule.is_default.is_(True))
        .values(is_default=False)
    )
    # the partial unique index allows one default per agency at any moment
    db.flush()


def _count_other_defaults(db: Session, *, agency_id: str, exclude_schedule_id: str) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(WorkSchedule)
            .where(
                WorkSchedule.agency_id == agency_id,
                WorkSchedule.is_default.is_(True),
                WorkSchedule.id != exclude_schedule_id,
            )
        )
        or 0
    )


def get_agency_schedule(db: Session, *, agency_id: str, schedule_id: str) -> WorkSchedule:
    schedule = db.get(WorkSchedule, schedule_id)
    if schedule is None:
        raise _schedule_not_found(schedule_id)
    if schedule.agency_id != agency_id:
        raise ApiError(
            status_code=403,
            code="SCHEDULE_FORBIDDEN",
            message="This schedule belongs to another agency.",
        )
    return schedule


def _commit_schedule(db: Session, schedule: WorkSchedule, *, name: str | None) -> WorkSchedule:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        violated = str(exc.orig)
        if "uq_work_schedules_agency_default" in violated:
            raise ApiError(
                status_code=409,
                code="DEFAULT_SCHEDULE_CONFLICT",
                message="Another default schedule was set concurrently. Please retry.",
            ) from exc
        if "uq_work_schedules_agency_name" in violated:
            raise _name_conflict(name) from exc
        if "uq_work_schedule_users_schedule_user" in violated:
            raise ApiError(
                status_code=409,
                code="SCHEDULE_ASSIGNMENT_CONFLICT",
                message="Schedule users were changed concurrently. Please retry.",
            ) from exc
        raise
    db.refresh(schedule)
    return schedule


def create_schedule(db: Session, *, agency_id: str, payload: WorkScheduleCreate) -> WorkSchedule:
    if payload.is_default:
        _clear_agency_default(db, agency_id=agency_id)

    schedule = WorkSchedule(
        agency_id=agency_id,
        name=payload.name,
        days_of_week=list(payload.days_of_week),
        entry_time=payload.entry_time,
        exit_time=payload.exit_time,
        grace_period_minutes=payload.grace_period_minutes,
        is_default=payload.is_default,
    )
    schedule.assigned_users = []
    db.add(schedule)
    _commit_schedule(db, schedule, name=schedule.name)
    logger.info(
        "schedule_created",
        extra={"schedule_id": schedule.id, "agency_id": agency_id, "is_default": schedule.is_default},
    )
    return schedule


def update_schedule(
    db: Session,
    *,
    agency_id: str,
    schedule_id: str,
    payload: WorkScheduleUpdate,
) -> WorkSchedule:
    schedule = get_agency_schedule(db, agency_id=agency_id, schedule_id=schedule_id)
    changes = payload.model_dump(exclude_unset=True)

    wants_default = changes.get("is_default")
    if wants_default is True and not schedule.is_default:
        _clear_agency_default(db, agency_id=agency_id)
    elif wants_default is False and schedule.is_default:
        if _count_other_defaults(db, agency_id=agency_id, exclude_schedule_id=schedule.id) == 0:
            raise _default_required(
                "The only default schedule cannot be unset. Mark another schedule as default first."
            )

    for field_name, value in changes.items():
        setattr(schedule, field_name, value)

    _commit_schedule(db, schedule, name=changes.get("name", schedule.name))
    logger.info(
        "schedule_updated",
        extra={"schedule_id": schedule.id, "agency_id": agency_id, "fields": sorted(changes)},
    )
    return schedule


def delete_schedule(db: Session, *, agency_id: str, schedule_id: str) -> None:
    schedule = get_agency_schedule(db, agency_id=agency_id, schedule_id=schedule_id)
    if schedule.is_default:
        raise _default_required(
            "The default schedule cannot be deleted. Mark another schedule as default first."
        )
    db.delete(schedule)
    db.commit()
    logger.info("schedule_deleted", extra={"schedule_id": schedule_id, "agency_id": agency_id})


def assign_schedule_users(
    db: Session,
    *,
    agency_id: str,
    schedule_id: str,
    user_ids: list[str],
) -> WorkSchedule:
    schedule = get_agency_schedule(db, agency_id=agency_id, schedule_id=schedule_id)

    desired: list[str] = []
    for user_id in user_ids:
        if user_id not in desired:
            desired.append(user_id)

    existing_rows = {row.user_id: row for row in list(schedule.assigned_users)}
    for user_id, row in existing_rows.items():
        if user_id not in desired:
            schedule.assigned_users.remove(row)
    for user_id in desired:
        if user_id not in existing_rows:
            schedule.assigned_users.append(WorkScheduleUser(user_id=user_id))

    _commit_schedule(db, schedule, name=schedule.name)
    logger.info(
        "schedule_users_assigned",
        extra={"schedule_id": schedule.id, "agency_id": agency_id, "user_count": len(desired)},
    )
    return schedule
