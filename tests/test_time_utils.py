from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone

from clockin.models import AttendanceStatus
from clockin.services.time_utils import (
    calendar_date,
    classify_check_in,
    is_valid_time_of_day,
    iso_weekday,
    normalize_ts,
    parse_time_of_day,
)


class WeekdayTests(unittest.TestCase):
    def test_sunday_maps_to_seven_and_monday_to_one(self) -> None:
        self.assertEqual(iso_weekday(date(2024, 6, 9)), 7)
        self.assertEqual(iso_weekday(date(2024, 6, 10)), 1)
        self.assertEqual(iso_weekday(date(2024, 6, 15)), 6)


class CalendarDateTests(unittest.TestCase):
    def test_naive_timestamp_is_treated_as_utc(self) -> None:
        naive = datetime(2024, 6, 10, 23, 30)
        self.assertEqual(normalize_ts(naive).tzinfo, timezone.utc)
        self.assertEqual(calendar_date(naive), date(2024, 6, 10))

    def test_offset_timestamp_uses_utc_day(self) -> None:
        plus_three = timezone(timedelta(hours=3))
        instant = datetime(2024, 6, 11, 1, 0, tzinfo=plus_three)
        self.assertEqual(calendar_date(instant), date(2024, 6, 10))


class ParseTimeOfDayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.reference = datetime(2024, 6, 10, 15, 45, 12, tzinfo=timezone.utc)

    def test_anchors_to_reference_day(self) -> None:
        parsed = parse_time_of_day("09:05", self.reference)
        self.assertEqual(parsed, datetime(2024, 6, 10, 9, 5, tzinfo=timezone.utc))

    def test_rejects_malformed_values(self) -> None:
        for value in ("9:00", "24:00", "12:60", "12-30", "", "aa:bb", "09:00:00"):
            with self.subTest(value=value):
                self.assertIsNone(parse_time_of_day(value, self.reference))
                self.assertFalse(is_valid_time_of_day(value))

    def test_accepts_day_edges(self) -> None:
        self.assertIsNotNone(parse_time_of_day("00:00", self.reference))
        self.assertIsNotNone(parse_time_of_day("23:59", self.reference))


class ClassifyCheckInTests(unittest.TestCase):
    def setUp(self) -> None:
        self.entry = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)

    def test_exact_entry_is_on_time(self) -> None:
        self.assertEqual(classify_check_in(self.entry, self.entry, 10), AttendanceStatus.ON_TIME)

    def test_grace_boundary_is_inclusive(self) -> None:
        at_limit = self.entry + timedelta(minutes=10)
        self.assertEqual(classify_check_in(at_limit, self.entry, 10), AttendanceStatus.ON_TIME)

    def test_one_minute_past_grace_is_late(self) -> None:
        past_limit = self.entry + timedelta(minutes=11)
        self.assertEqual(classify_check_in(past_limit, self.entry, 10), AttendanceStatus.LATE)

    def test_zero_grace_means_any_delay_is_late(self) -> None:
        self.assertEqual(
            classify_check_in(self.entry + timedelta(seconds=1), self.entry, 0),
            AttendanceStatus.LATE,
        )

    def test_missing_entry_time_leaves_status_unset(self) -> None:
        self.assertIsNone(classify_check_in(self.entry, None, 10))


if __name__ == "__main__":
    unittest.main()
