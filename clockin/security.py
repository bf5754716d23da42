from __future__ import annotations

from uuid import UUID

from fastapi import Header, Request

from clockin.errors import ApiError

AGENCY_HEADER = "X-Agency-Id"
USER_HEADER = "X-User-Id"


def _parse_identity(raw: str | None) -> str | None:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        return None


def require_agency_id(
    request: Request,
    x_agency_id: str | None = Header(default=None, alias=AGENCY_HEADER),
) -> str:
    # the gateway authenticates the session and forwards the agency id
    agency_id = _parse_identity(x_agency_id)
    if agency_id is None:
        raise ApiError(
            status_code=401,
            code="AGENCY_NOT_AUTHENTICATED",
            message="Agency is not authenticated.",
        )
    request.state.actor = "agency"
    request.state.actor_id = agency_id
    return agency_id


def require_user_id(
    request: Request,
    x_user_id: str | None = Header(default=None, alias=USER_HEADER),
) -> str:
    user_id = _parse_identity(x_user_id)
    if user_id is None:
        raise ApiError(
            status_code=401,
            code="USER_NOT_AUTHENTICATED",
            message="User is not authenticated.",
        )
    request.state.actor = "user"
    request.state.actor_id = user_id
    return user_id
