from __future__ import annotations

import unittest

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from clockin.errors import ApiError
from clockin.models import WorkSchedule, WorkScheduleUser
from clockin.schemas import WorkScheduleCreate, WorkScheduleUpdate
from clockin.services.schedules import (
    assign_schedule_users,
    create_schedule,
    delete_schedule,
    get_agency_schedule,
    update_schedule,
)

AGENCY_ID = "7f8e1c52-3a0b-4b64-9a0c-1f9d2a6c0001"
OTHER_AGENCY_ID = "0a0b0c0d-1111-4222-8333-444455556666"
USER_A = "2b1f6b6e-9c61-4f0e-8a1e-5d8f3c2a0002"
USER_B = "c3d4e5f6-0000-4aaa-8bbb-000000000003"


class FakeSession:
    def __init__(
        self,
        *,
        schedules: dict[str, WorkSchedule] | None = None,
        other_defaults: int = 0,
        commit_error: Exception | None = None,
    ) -> None:
        self.schedules = schedules or {}
        self.other_defaults = other_defaults
        self.commit_error = commit_error
        self.added: list[object] = []
        self.deleted: list[object] = []
        self.executed: list[object] = []
        self.events: list[str] = []
        self.rolled_back = False

    def get(self, _model, key):  # type: ignore[no-untyped-def]
        return self.schedules.get(key)

    def add(self, obj: object) -> None:
        self.events.append("add")
        self.added.append(obj)

    def delete(self, obj: object) -> None:
        self.deleted.append(obj)

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.events.append("execute")
        self.executed.append(statement)

    def flush(self) -> None:
        self.events.append("flush")

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.other_defaults

    def commit(self) -> None:
        self.events.append("commit")
        if self.commit_error is not None:
            raise self.commit_error

    def rollback(self) -> None:
        self.rolled_back = True

    def refresh(self, _obj: object) -> None:
        return


def _schedule(schedule_id: str = "s-1", *, agency_id: str = AGENCY_ID, is_default: bool = False) -> WorkSchedule:
    schedule = WorkSchedule(
        id=schedule_id,
        agency_id=agency_id,
        name=f"Schedule {schedule_id}",
        days_of_week=[1, 2, 3, 4, 5],
        entry_time="09:00",
        exit_time="17:00",
        grace_period_minutes=10,
        is_default=is_default,
    )
    schedule.assigned_users = []
    return schedule


def _create_payload(**overrides) -> WorkScheduleCreate:
    data = {
        "name": "Office",
        "days_of_week": [1, 2, 3, 4, 5],
        "entry_time": "09:00",
        "exit_time": "17:00",
    }
    data.update(overrides)
    return WorkScheduleCreate(**data)


class ScheduleValidationTests(unittest.TestCase):
    def test_grace_defaults_to_ten_minutes(self) -> None:
        self.assertEqual(_create_payload().grace_period_minutes, 10)

    def test_rejects_bad_weekday_and_duplicates(self) -> None:
        for days in ([], [0], [8], [1, 1]):
            with self.subTest(days=days):
                with self.assertRaises(ValidationError):
                    _create_payload(days_of_week=days)

    def test_rejects_non_strict_time(self) -> None:
        for value in ("9:00", "24:00", "12:5"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    _create_payload(entry_time=value)

    def test_rejects_negative_grace(self) -> None:
        with self.assertRaises(ValidationError):
            _create_payload(grace_period_minutes=-1)

    def test_update_requires_at_least_one_field(self) -> None:
        with self.assertRaises(ValidationError):
            WorkScheduleUpdate()

    def test_update_rejects_explicit_null(self) -> None:
        with self.assertRaises(ValidationError):
            WorkScheduleUpdate(name=None)

    def test_name_is_trimmed(self) -> None:
        self.assertEqual(_create_payload(name="  Office ").name, "Office")
        self.assertEqual(WorkScheduleUpdate(name=" Late shift  ").name, "Late shift")

    def test_blank_name_is_rejected(self) -> None:
        for value in ("", "   ", "\t\n"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    _create_payload(name=value)
                with self.assertRaises(ValidationError):
                    WorkScheduleUpdate(name=value)


class ScheduleOwnershipTests(unittest.TestCase):
    def test_missing_schedule_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as exc:
            get_agency_schedule(FakeSession(), agency_id=AGENCY_ID, schedule_id="nope")  # type: ignore[arg-type]

        self.assertEqual(exc.exception.status_code, 404)
        self.assertEqual(exc.exception.code, "SCHEDULE_NOT_FOUND")

    def test_foreign_schedule_is_forbidden(self) -> None:
        db = FakeSession(schedules={"s-1": _schedule(agency_id=OTHER_AGENCY_ID)})

        with self.assertRaises(ApiError) as exc:
            get_agency_schedule(db, agency_id=AGENCY_ID, schedule_id="s-1")  # type: ignore[arg-type]

        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "SCHEDULE_FORBIDDEN")


class ScheduleDefaultRuleTests(unittest.TestCase):
    def test_create_default_clears_previous_default_first(self) -> None:
        db = FakeSession()

        schedule = create_schedule(db, agency_id=AGENCY_ID, payload=_create_payload(is_default=True))  # type: ignore[arg-type]

        self.assertTrue(schedule.is_default)
        self.assertEqual(schedule.agency_id, AGENCY_ID)
        self.assertEqual(db.events[:3], ["execute", "flush", "add"])
        self.assertEqual(db.events[-1], "commit")

    def test_create_non_default_leaves_existing_default(self) -> None:
        db = FakeSession()

        create_schedule(db, agency_id=AGENCY_ID, payload=_create_payload())  # type: ignore[arg-type]

        self.assertEqual(db.executed, [])

    def test_name_conflict_is_reported(self) -> None:
        db = FakeSession(
            commit_error=IntegrityError("INSERT", {}, Exception("uq_work_schedules_agency_name")),
        )

        with self.assertRaises(ApiError) as exc:
            create_schedule(db, agency_id=AGENCY_ID, payload=_create_payload(name="Office"))  # type: ignore[arg-type]

        self.assertTrue(db.rolled_back)
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(exc.exception.code, "SCHEDULE_NAME_CONFLICT")

    def test_unsetting_only_default_is_blocked(self) -> None:
        db = FakeSession(schedules={"s-1": _schedule(is_default=True)}, other_defaults=0)

        with self.assertRaises(ApiError) as exc:
            update_schedule(
                db,  # type: ignore[arg-type]
                agency_id=AGENCY_ID,
                schedule_id="s-1",
                payload=WorkScheduleUpdate(is_default=False),
            )

        self.assertEqual(exc.exception.status_code, 400)
        self.assertEqual(exc.exception.code, "DEFAULT_SCHEDULE_REQUIRED")
        self.assertNotIn("commit", db.events)

    def test_unsetting_default_allowed_when_another_exists(self) -> None:
        schedule = _schedule(is_default=True)
        db = FakeSession(schedules={"s-1": schedule}, other_defaults=1)

        updated = update_schedule(
            db,  # type: ignore[arg-type]
            agency_id=AGENCY_ID,
            schedule_id="s-1",
            payload=WorkScheduleUpdate(is_default=False),
        )

        self.assertFalse(updated.is_default)

    def test_promoting_schedule_clears_previous_default(self) -> None:
        schedule = _schedule()
        db = FakeSession(schedules={"s-1": schedule})

        update_schedule(
            db,  # type: ignore[arg-type]
            agency_id=AGENCY_ID,
            schedule_id="s-1",
            payload=WorkScheduleUpdate(is_default=True, entry_time="08:30"),
        )

        self.assertEqual(len(db.executed), 1)
        self.assertTrue(schedule.is_default)
        self.assertEqual(schedule.entry_time, "08:30")

    def test_partial_update_keeps_other_fields(self) -> None:
        schedule = _schedule()
        db = FakeSession(schedules={"s-1": schedule})

        update_schedule(
            db,  # type: ignore[arg-type]
            agency_id=AGENCY_ID,
            schedule_id="s-1",
            payload=WorkScheduleUpdate(name="  Late shift "),
        )

        self.assertEqual(schedule.name, "Late shift")
        self.assertEqual(schedule.entry_time, "09:00")
        self.assertEqual(schedule.days_of_week, [1, 2, 3, 4, 5])

    def test_deleting_default_is_blocked(self) -> None:
        db = FakeSession(schedules={"s-1": _schedule(is_default=True)})

        with self.assertRaises(ApiError) as exc:
            delete_schedule(db, agency_id=AGENCY_ID, schedule_id="s-1")  # type: ignore[arg-type]

        self.assertEqual(exc.exception.code, "DEFAULT_SCHEDULE_REQUIRED")
        self.assertEqual(db.deleted, [])

    def test_deleting_regular_schedule(self) -> None:
        schedule = _schedule()
        db = FakeSession(schedules={"s-1": schedule})

        delete_schedule(db, agency_id=AGENCY_ID, schedule_id="s-1")  # type: ignore[arg-type]

        self.assertEqual(db.deleted, [schedule])


class ScheduleAssignmentTests(unittest.TestCase):
    def test_assignment_replaces_and_deduplicates(self) -> None:
        schedule = _schedule()
        schedule.assigned_users = [WorkScheduleUser(user_id=USER_A)]
        db = FakeSession(schedules={"s-1": schedule})

        assign_schedule_users(
            db,  # type: ignore[arg-type]
            agency_id=AGENCY_ID,
            schedule_id="s-1",
            user_ids=[USER_B, USER_B],
        )

        self.assertEqual(schedule.assigned_user_ids, [USER_B])

    def test_existing_assignment_rows_are_kept(self) -> None:
        existing = WorkScheduleUser(user_id=USER_A)
        schedule = _schedule()
        schedule.assigned_users = [existing]
        db = FakeSession(schedules={"s-1": schedule})

        assign_schedule_users(
            db,  # type: ignore[arg-type]
            agency_id=AGENCY_ID,
            schedule_id="s-1",
            user_ids=[USER_A, USER_B],
        )

        self.assertIs(schedule.assigned_users[0], existing)
        self.assertEqual(schedule.assigned_user_ids, [USER_A, USER_B])

    def test_concurrent_assignment_is_assignment_conflict(self) -> None:
        db = FakeSession(
            schedules={"s-1": _schedule()},
            commit_error=IntegrityError(
                "INSERT INTO work_schedule_users", {}, Exception("uq_work_schedule_users_schedule_user")
            ),
        )

        with self.assertRaises(ApiError) as exc:
            assign_schedule_users(
                db,  # type: ignore[arg-type]
                agency_id=AGENCY_ID,
                schedule_id="s-1",
                user_ids=[USER_A],
            )

        self.assertTrue(db.rolled_back)
        self.assertEqual(exc.exception.status_code, 409)
        self.assertEqual(exc.exception.code, "SCHEDULE_ASSIGNMENT_CONFLICT")

    def test_unrecognised_integrity_error_propagates(self) -> None:
        db = FakeSession(
            schedules={"s-1": _schedule()},
            commit_error=IntegrityError(
                "INSERT INTO work_schedule_users", {}, Exception("fk_work_schedule_users_schedule_id")
            ),
        )

        with self.assertRaises(IntegrityError):
            assign_schedule_users(
                db,  # type: ignore[arg-type]
                agency_id=AGENCY_ID,
                schedule_id="s-1",
                user_ids=[USER_A],
            )

        self.assertTrue(db.rolled_back)


if __name__ == "__main__":
    unittest.main()
