#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = ("attendance_records", "work_schedules", "work_schedule_users", "audit_logs")


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "attendance_records" in tables:
            duplicate_days = conn.execute(
                text(
                    """
                    select user_id, date, count(*)
                    from attendance_records
                    group by user_id, date
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "duplicate_attendance_day",
                "fail" if duplicate_days else "ok",
                {"rows": [[str(item) for item in row] for row in duplicate_days]},
            )

            checkout_before_checkin = conn.execute(
                text(
                    """
                    select id
                    from attendance_records
                    where check_out_time is not null
                      and check_out_time < check_in_time
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "checkout_before_checkin",
                "warn" if checkout_before_checkin else "ok",
                {"sample_ids": [row[0] for row in checkout_before_checkin]},
            )

        if "work_schedules" in tables:
            agencies_without_default = conn.execute(
                text(
                    """
                    select agency_id
                    from work_schedules
                    group by agency_id
                    having sum(case when is_default then 1 else 0 end) = 0
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "agency_without_default_schedule",
                "warn" if agencies_without_default else "ok",
                {"agency_ids": [row[0] for row in agencies_without_default]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
