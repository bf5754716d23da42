from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from clockin.models import AuditActorType, AuditLog

logger = logging.getLogger("clockin.audit")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def record_audit_event(
    db: Session,
    request: Request,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Persist one audit row for the current request.

    The business change is already committed when this runs, so a failed
    audit write is rolled back and logged instead of surfacing to the caller.
    """
    request_id = getattr(request.state, "request_id", None)
    payload = details or {}
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            success=success,
            details=payload,
        )
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": payload,
        },
    )
