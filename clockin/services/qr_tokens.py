from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib import parse as urllib_parse
from uuid import uuid4

from jose import JWTError, jwt

from clockin.errors import ApiError
from clockin.models import AttendanceAction
from clockin.services.time_utils import normalize_ts
from clockin.settings import get_settings

logger = logging.getLogger("clockin.qr")

QR_TOKEN_TYPE = "qr"
QR_TOKEN_ALGORITHM = "HS256"


@dataclass(frozen=True, slots=True)
class IssuedQrToken:
    token: str
    url: str
    action: AttendanceAction
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class QrTokenClaims:
    agency_id: str
    action: AttendanceAction
    issued_at: datetime
    expires_at: datetime
    token_id: str


def _require_secret() -> str:
    secret = (get_settings().qr_jwt_secret or "").strip()
    if not secret:
        raise ApiError(
            status_code=500,
            code="QR_SECRET_NOT_CONFIGURED",
            message="QR signing secret is not configured.",
        )
    return secret


def _invalid_token(message: str = "QR token is invalid.") -> ApiError:
    return ApiError(status_code=401, code="QR_TOKEN_INVALID", message=message)


def build_qr_url(token: str, action: AttendanceAction) -> str:
    base_url = get_settings().qr_base_url
    query = urllib_parse.urlencode({"token": token, "type": action.value})
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{query}"


def issue_qr_token(agency_id: str, action: AttendanceAction, now: datetime | None = None) -> IssuedQrToken:
    settings = get_settings()
    secret = _require_secret()
    issued_at = normalize_ts(now).replace(microsecond=0)
    expires_at = issued_at + timedelta(minutes=max(1, int(settings.qr_token_minutes)))
    claims: dict[str, Any] = {
        "sub": agency_id,
        "agency_id": agency_id,
        "action": action.value,
        "iss": settings.qr_jwt_issuer,
        "aud": settings.qr_jwt_audience,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
        "jti": str(uuid4()),
        "typ": QR_TOKEN_TYPE,
    }
    token = jwt.encode(claims, secret, algorithm=QR_TOKEN_ALGORITHM)
    logger.info(
        "qr_token_issued",
        extra={
            "agency_id": agency_id,
            "action": action.value,
            "token_id": claims["jti"],
            "expires_at": expires_at.isoformat(),
        },
    )
    return IssuedQrToken(
        token=token,
        url=build_qr_url(token, action),
        action=action,
        issued_at=issued_at,
        expires_at=expires_at,
    )


def verify_qr_token(token: str, now: datetime | None = None) -> QrTokenClaims:
    """Check signature, issuer, audience and expiry of a QR token.

    Expiry is compared against ``now`` rather than the wall clock so the
    caller controls the instant of the attempt.
    """
    settings = get_settings()
    secret = _require_secret()
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[QR_TOKEN_ALGORITHM],
            audience=settings.qr_jwt_audience,
            issuer=settings.qr_jwt_issuer,
            options={"verify_exp": False, "require_exp": True, "require_iat": True},
        )
    except JWTError as exc:
        logger.warning("qr_token_rejected", extra={"reason": str(exc)})
        raise _invalid_token() from exc

    if payload.get("typ") != QR_TOKEN_TYPE:
        raise _invalid_token("QR token type is invalid.")

    agency_id = payload.get("agency_id") or payload.get("sub")
    if not isinstance(agency_id, str) or not agency_id:
        raise _invalid_token("QR token agency is invalid.")

    try:
        action = AttendanceAction(payload.get("action"))
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise _invalid_token() from exc

    if normalize_ts(now) > expires_at:
        logger.info(
            "qr_token_expired",
            extra={"agency_id": agency_id, "expires_at": expires_at.isoformat()},
        )
        raise ApiError(status_code=401, code="QR_TOKEN_EXPIRED", message="QR code has expired.")

    return QrTokenClaims(
        agency_id=agency_id,
        action=action,
        issued_at=issued_at,
        expires_at=expires_at,
        token_id=str(payload.get("jti") or ""),
    )
