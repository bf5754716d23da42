from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from clockin.audit import record_audit_event
from clockin.db import get_db
from clockin.errors import ApiError
from clockin.models import AuditActorType
from clockin.schemas import (
    ScheduleUsersAssignRequest,
    WorkScheduleCreate,
    WorkScheduleRead,
    WorkScheduleUpdate,
)
from clockin.security import require_agency_id
from clockin.services.schedules import (
    assign_schedule_users,
    create_schedule,
    delete_schedule,
    list_agency_schedules,
    resolve_applicable_schedule,
    update_schedule,
)

router = APIRouter(prefix="/api/schedules", tags=["schedules"])


@router.get("/applicable", response_model=WorkScheduleRead)
def get_applicable_schedule(
    agency_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    user_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
) -> WorkScheduleRead:
    schedule = resolve_applicable_schedule(
        db,
        agency_id=str(agency_id),
        user_id=str(user_id) if user_id else None,
        day=day,
    )
    if schedule is None:
        raise ApiError(
            status_code=404,
            code="NO_APPLICABLE_SCHEDULE",
            message="No work schedule applies on this date.",
        )
    return WorkScheduleRead.model_validate(schedule)


@router.post("", response_model=WorkScheduleRead, status_code=status.HTTP_201_CREATED)
def create_agency_schedule(
    payload: WorkScheduleCreate,
    request: Request,
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> WorkScheduleRead:
    schedule = create_schedule(db, agency_id=agency_id, payload=payload)
    record_audit_event(
        db,
        request,
        actor_type=AuditActorType.AGENCY,
        actor_id=agency_id,
        action="SCHEDULE_CREATED",
        entity_type="work_schedule",
        entity_id=schedule.id,
        details={"name": schedule.name, "is_default": schedule.is_default},
    )
    return WorkScheduleRead.model_validate(schedule)


@router.get("", response_model=list[WorkScheduleRead])
def list_schedules(
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> list[WorkScheduleRead]:
    return [WorkScheduleRead.model_validate(item) for item in list_agency_schedules(db, agency_id=agency_id)]


@router.put("/{schedule_id}", response_model=WorkScheduleRead)
def update_agency_schedule(
    schedule_id: str,
    payload: WorkScheduleUpdate,
    request: Request,
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> WorkScheduleRead:
    schedule = update_schedule(db, agency_id=agency_id, schedule_id=schedule_id, payload=payload)
    record_audit_event(
        db,
        request,
        actor_type=AuditActorType.AGENCY,
        actor_id=agency_id,
        action="SCHEDULE_UPDATED",
        entity_type="work_schedule",
        entity_id=schedule.id,
        details={"fields": sorted(payload.model_fields_set)},
    )
    return WorkScheduleRead.model_validate(schedule)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_agency_schedule(
    schedule_id: str,
    request: Request,
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> Response:
    delete_schedule(db, agency_id=agency_id, schedule_id=schedule_id)
    record_audit_event(
        db,
        request,
        actor_type=AuditActorType.AGENCY,
        actor_id=agency_id,
        action="SCHEDULE_DELETED",
        entity_type="work_schedule",
        entity_id=schedule_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{schedule_id}/users", response_model=WorkScheduleRead)
def assign_users(
    schedule_id: str,
    payload: ScheduleUsersAssignRequest,
    request: Request,
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> WorkScheduleRead:
    schedule = assign_schedule_users(
        db,
        agency_id=agency_id,
        schedule_id=schedule_id,
        user_ids=[str(item) for item in payload.user_ids],
    )
    record_audit_event(
        db,
        request,
        actor_type=AuditActorType.AGENCY,
        actor_id=agency_id,
        action="SCHEDULE_USERS_ASSIGNED",
        entity_type="work_schedule",
        entity_id=schedule.id,
        details={"user_ids": schedule.assigned_user_ids},
    )
    return WorkScheduleRead.model_validate(schedule)
