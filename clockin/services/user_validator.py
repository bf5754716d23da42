from __future__ import annotations

import enum
import http.client
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from clockin.settings import get_upstream_timeout_seconds, get_user_service_base_url

logger = logging.getLogger("clockin.upstream")

USER_VALIDATE_PATH = "/api/users/validate"


class UserValidationStatus(str, enum.Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True, slots=True)
class UserValidationResult:
    status: UserValidationStatus
    detail: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == UserValidationStatus.VALID


class UserValidator(Protocol):
    def validate(self, *, user_id: str, agency_id: str) -> UserValidationResult: ...


def _post_json(
    *,
    url: str,
    payload: dict[str, Any],
    timeout_seconds: float,
) -> tuple[int, Any]:
    body = json.dumps(payload).encode("utf-8")
    request = urllib_request.Request(
        url=url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    with urllib_request.urlopen(request, timeout=timeout_seconds) as response:
        status_code = int(getattr(response, "status", 200) or 200)
        raw = response.read().decode("utf-8", errors="ignore")
    return status_code, json.loads(raw) if raw else None


class HttpUserValidator:
    """Asks the user service whether a user is active inside an agency.

    Only an explicit ``{"isValid": true}`` counts as valid. Transport errors,
    timeouts, non-2xx answers and unreadable bodies are reported as
    ``UNAVAILABLE`` so callers can tell them apart from a negative answer.
    """

    def __init__(self, base_url: str | None = None, *, timeout_seconds: float | None = None) -> None:
        self._base_url = (base_url or get_user_service_base_url()).rstrip("/")
        self._timeout_seconds = timeout_seconds if timeout_seconds is not None else get_upstream_timeout_seconds()

    def validate(self, *, user_id: str, agency_id: str) -> UserValidationResult:
        url = f"{self._base_url}{USER_VALIDATE_PATH}"
        try:
            status_code, body = _post_json(
                url=url,
                payload={"userId": user_id, "agencyId": agency_id},
                timeout_seconds=self._timeout_seconds,
            )
        except urllib_error.HTTPError as exc:
            logger.warning(
                "user_validation_http_error",
                extra={"user_id": user_id, "agency_id": agency_id, "status_code": exc.code},
            )
            return UserValidationResult(UserValidationStatus.UNAVAILABLE, f"HTTP {exc.code}")
        except (urllib_error.URLError, http.client.HTTPException, TimeoutError, OSError) as exc:
            logger.warning(
                "user_validation_unreachable",
                extra={"user_id": user_id, "agency_id": agency_id, "error": str(exc)},
            )
            return UserValidationResult(UserValidationStatus.UNAVAILABLE, str(exc))
        except ValueError as exc:
            logger.warning(
                "user_validation_bad_payload",
                extra={"user_id": user_id, "agency_id": agency_id, "error": str(exc)},
            )
            return UserValidationResult(UserValidationStatus.UNAVAILABLE, "Malformed response body")

        if not 200 <= status_code < 300 or not isinstance(body, dict) or "isValid" not in body:
            return UserValidationResult(UserValidationStatus.UNAVAILABLE, f"Unexpected response ({status_code})")
        if body.get("isValid") is True:
            return UserValidationResult(UserValidationStatus.VALID)
        return UserValidationResult(UserValidationStatus.INVALID)
