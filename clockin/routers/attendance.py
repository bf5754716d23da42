from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from clockin.audit import record_audit_event
from clockin.db import get_db
from clockin.models import AttendanceAction, AttendanceMethod, AttendanceRecord, AuditActorType
from clockin.schemas import (
    AttendanceMarkResponse,
    AttendanceRecordRead,
    ManualAttendanceRequest,
    QrAttendanceRequest,
    QrGenerateRequest,
    QrGenerateResponse,
    TodayStatusResponse,
)
from clockin.security import require_agency_id, require_user_id
from clockin.services.attendance import (
    AttendanceMarker,
    SqlAttendanceRecordStore,
    TODAY_NOT_STARTED,
    get_today_record,
    list_attendance_history,
    today_status,
)
from clockin.services.qr_tokens import issue_qr_token
from clockin.services.schedules import build_schedule_resolver
from clockin.services.user_validator import HttpUserValidator

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def get_attendance_marker(db: Session = Depends(get_db)) -> AttendanceMarker:
    return AttendanceMarker(
        user_validator=HttpUserValidator(),
        schedule_resolver=build_schedule_resolver(db),
        records=SqlAttendanceRecordStore(db),
    )


def _mark_response(
    request: Request,
    response: Response,
    db: Session,
    *,
    record: AttendanceRecord,
    action: AttendanceAction,
    method: AttendanceMethod,
    actor_type: AuditActorType,
    actor_id: str,
) -> AttendanceMarkResponse:
    if action == AttendanceAction.CHECK_IN:
        response.status_code = status.HTTP_201_CREATED
    request.state.user_id = record.user_id
    request.state.record_id = record.id
    record_audit_event(
        db,
        request,
        actor_type=actor_type,
        actor_id=actor_id,
        action="ATTENDANCE_CHECK_IN" if action == AttendanceAction.CHECK_IN else "ATTENDANCE_CHECK_OUT",
        entity_type="attendance_record",
        entity_id=record.id,
        details={
            "user_id": record.user_id,
            "agency_id": record.agency_id,
            "method": method.value,
            "status": record.status.value if record.status else None,
        },
    )
    return AttendanceMarkResponse(
        ok=True,
        action=action,
        record=AttendanceRecordRead.model_validate(record),
    )


@router.post("/manual", response_model=AttendanceMarkResponse)
def mark_manual(
    payload: ManualAttendanceRequest,
    request: Request,
    response: Response,
    agency_id: str = Depends(require_agency_id),
    marker: AttendanceMarker = Depends(get_attendance_marker),
    db: Session = Depends(get_db),
) -> AttendanceMarkResponse:
    record = marker.mark_attendance(
        user_id=str(payload.user_id),
        agency_id=agency_id,
        method=payload.method,
        action=payload.action,
        notes=payload.notes,
    )
    return _mark_response(
        request,
        response,
        db,
        record=record,
        action=payload.action,
        method=payload.method,
        actor_type=AuditActorType.AGENCY,
        actor_id=agency_id,
    )


@router.post("/qr/generate", response_model=QrGenerateResponse)
def generate_qr(
    payload: QrGenerateRequest,
    agency_id: str = Depends(require_agency_id),
) -> QrGenerateResponse:
    issued = issue_qr_token(agency_id, payload.action)
    return QrGenerateResponse(
        url=issued.url,
        token=issued.token,
        action=issued.action,
        issued_at=issued.issued_at,
        expires_at=issued.expires_at,
    )


@router.post("/qr", response_model=AttendanceMarkResponse)
def mark_by_qr(
    payload: QrAttendanceRequest,
    request: Request,
    response: Response,
    user_id: str = Depends(require_user_id),
    marker: AttendanceMarker = Depends(get_attendance_marker),
    db: Session = Depends(get_db),
) -> AttendanceMarkResponse:
    record = marker.mark_by_qr(user_id=user_id, token=payload.token, requested_action=payload.action)
    return _mark_response(
        request,
        response,
        db,
        record=record,
        action=payload.action,
        method=AttendanceMethod.QR,
        actor_type=AuditActorType.USER,
        actor_id=user_id,
    )


@router.get("/today", response_model=TodayStatusResponse)
def get_today(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> TodayStatusResponse:
    record = get_today_record(db, user_id=user_id)
    state = today_status(record)
    if record is None:
        return TodayStatusResponse(
            today_status=TODAY_NOT_STARTED,
            record=None,
            message="No attendance has been recorded today.",
        )
    return TodayStatusResponse(today_status=state, record=AttendanceRecordRead.model_validate(record))


@router.get("/history/agency", response_model=list[AttendanceRecordRead])
def get_agency_history(
    start_date: date = Query(...),
    end_date: date = Query(...),
    user_id: UUID | None = Query(default=None),
    agency_id: str = Depends(require_agency_id),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = list_attendance_history(
        db,
        agency_id=agency_id,
        user_id=str(user_id) if user_id else None,
        start_date=start_date,
        end_date=end_date,
    )
    return [AttendanceRecordRead.model_validate(item) for item in records]


@router.get("/history/user", response_model=list[AttendanceRecordRead])
def get_user_history(
    start_date: date = Query(...),
    end_date: date = Query(...),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = list_attendance_history(
        db,
        agency_id=None,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [AttendanceRecordRead.model_validate(item) for item in records]
