from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

EXPECTED_ALEMBIC_HEAD = "0001_initial"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    alembic_version: str | None = None
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "alembic_version": self.alembic_version,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "attendance_records": {
        "id",
        "user_id",
        "agency_id",
        "date",
        "check_in_time",
        "check_out_time",
        "status",
        "method_in",
        "method_out",
        "schedule_entry_time",
        "schedule_exit_time",
    },
    "work_schedules": {
        "id",
        "agency_id",
        "name",
        "days_of_week",
        "entry_time",
        "exit_time",
        "grace_period_minutes",
        "is_default",
        "updated_at",
    },
    "work_schedule_users": {"id", "schedule_id", "user_id"},
    "audit_logs": {"id", "actor_type", "action", "details"},
    "alembic_version": {"version_num"},
}

# one record per user per day is enforced here, not in application code
REQUIRED_UNIQUE_CONSTRAINTS: dict[str, set[str]] = {
    "attendance_records": {"uq_attendance_records_user_date"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_status": {"ON_TIME", "LATE"},
    "attendance_method": {"MANUAL", "QR", "NFC"},
}


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")


def _check_unique_constraints(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    for table_name, required_names in REQUIRED_UNIQUE_CONSTRAINTS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_unique_constraints(table_name)}
        except Exception as exc:  # pragma: no cover
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(name for name in required_names if name not in present)
        if missing:
            issues.append(f"MISSING_UNIQUE_CONSTRAINTS:{table_name}:{','.join(missing)}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:  # pragma: no cover
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Inspect the live database before the app starts serving.

    Issues make the result fail; warnings are reported but do not.
    """
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_unique_constraints(inspector, issues, warnings)
    _check_enums(inspector, issues, warnings)

    version: str | None = None
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
            elif version != EXPECTED_ALEMBIC_HEAD:
                warnings.append(f"ALEMBIC_VERSION_MISMATCH:{version}!={EXPECTED_ALEMBIC_HEAD}")
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        alembic_version=version or None,
        issues=issues,
        warnings=warnings,
    )
