from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from jose import jwt

from clockin.errors import ApiError
from clockin.models import AttendanceAction
from clockin.services.qr_tokens import issue_qr_token, verify_qr_token
from clockin.settings import get_settings

AGENCY_ID = "7f8e1c52-3a0b-4b64-9a0c-1f9d2a6c0001"
ISSUED_AT = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)


class QrTokenTests(unittest.TestCase):
    def setUp(self) -> None:
        self._env = patch.dict(
            os.environ,
            {
                "QR_JWT_SECRET": "unit-test-secret",
                "QR_BASE_URL": "https://app.example.test/attendance/qr",
                "QR_TOKEN_MINUTES": "60",
            },
        )
        self._env.start()
        get_settings.cache_clear()

    def tearDown(self) -> None:
        self._env.stop()
        get_settings.cache_clear()

    def test_token_valid_within_window(self) -> None:
        issued = issue_qr_token(AGENCY_ID, AttendanceAction.CHECK_IN, now=ISSUED_AT)

        claims = verify_qr_token(issued.token, now=ISSUED_AT + timedelta(minutes=30))

        self.assertEqual(claims.agency_id, AGENCY_ID)
        self.assertEqual(claims.action, AttendanceAction.CHECK_IN)
        self.assertEqual(claims.expires_at, ISSUED_AT + timedelta(minutes=60))
        self.assertEqual(issued.expires_at, ISSUED_AT + timedelta(minutes=60))

    def test_token_expired_after_window(self) -> None:
        issued = issue_qr_token(AGENCY_ID, AttendanceAction.CHECK_OUT, now=ISSUED_AT)

        with self.assertRaises(ApiError) as exc:
            verify_qr_token(issued.token, now=ISSUED_AT + timedelta(minutes=61))

        self.assertEqual(exc.exception.status_code, 401)
        self.assertEqual(exc.exception.code, "QR_TOKEN_EXPIRED")

    def test_url_carries_token_and_action(self) -> None:
        issued = issue_qr_token(AGENCY_ID, AttendanceAction.CHECK_OUT, now=ISSUED_AT)

        parsed = urlparse(issued.url)
        query = parse_qs(parsed.query)
        self.assertEqual(f"{parsed.scheme}://{parsed.netloc}{parsed.path}", "https://app.example.test/attendance/qr")
        self.assertEqual(query["token"], [issued.token])
        self.assertEqual(query["type"], ["check-out"])

    def test_tampered_token_is_invalid(self) -> None:
        issued = issue_qr_token(AGENCY_ID, AttendanceAction.CHECK_IN, now=ISSUED_AT)
        header, payload, signature = issued.token.split(".")
        tampered = ".".join([header, payload, signature[::-1]])

        with self.assertRaises(ApiError) as exc:
            verify_qr_token(tampered, now=ISSUED_AT)

        self.assertEqual(exc.exception.code, "QR_TOKEN_INVALID")

    def test_token_signed_with_other_secret_is_invalid(self) -> None:
        forged = jwt.encode(
            {
                "sub": AGENCY_ID,
                "agency_id": AGENCY_ID,
                "action": "check-in",
                "iss": "clockin-attendance",
                "aud": "clockin-qr",
                "iat": int(ISSUED_AT.timestamp()),
                "exp": int((ISSUED_AT + timedelta(minutes=60)).timestamp()),
                "typ": "qr",
            },
            "another-secret",
            algorithm="HS256",
        )

        with self.assertRaises(ApiError) as exc:
            verify_qr_token(forged, now=ISSUED_AT)

        self.assertEqual(exc.exception.code, "QR_TOKEN_INVALID")

    def test_wrong_token_type_is_invalid(self) -> None:
        other = jwt.encode(
            {
                "sub": AGENCY_ID,
                "action": "check-in",
                "iss": "clockin-attendance",
                "aud": "clockin-qr",
                "iat": int(ISSUED_AT.timestamp()),
                "exp": int((ISSUED_AT + timedelta(minutes=60)).timestamp()),
                "typ": "access",
            },
            "unit-test-secret",
            algorithm="HS256",
        )

        with self.assertRaises(ApiError) as exc:
            verify_qr_token(other, now=ISSUED_AT)

        self.assertEqual(exc.exception.code, "QR_TOKEN_INVALID")

    def test_missing_secret_is_configuration_error(self) -> None:
        with patch.dict(os.environ, {"QR_JWT_SECRET": ""}):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as exc:
                issue_qr_token(AGENCY_ID, AttendanceAction.CHECK_IN, now=ISSUED_AT)

        self.assertEqual(exc.exception.status_code, 500)
        self.assertEqual(exc.exception.code, "QR_SECRET_NOT_CONFIGURED")


if __name__ == "__main__":
    unittest.main()
