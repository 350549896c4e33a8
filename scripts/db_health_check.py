#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, inspect, text


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = [
    "app_users",
    "timesheet_periods",
    "timesheet_approval_events",
    "timesheet_export_batches",
    "planned_leaves",
    "signature_profiles",
    "rule_configurations",
    "audit_logs",
]


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
        "database_url": database_url,
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

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
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

        missing = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})

        if "timesheet_periods" in tables:
            orphan_periods = conn.execute(
                text(
                    """
                    select p.id
                    from timesheet_periods p
                    left join app_users u on u.id = p.employee_id
                    where u.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timesheet_orphan_employee",
                "fail" if orphan_periods else "ok",
                {"sample_ids": [row[0] for row in orphan_periods]},
            )

            bad_keys = conn.execute(
                text(
                    """
                    select id, period_key
                    from timesheet_periods
                    where length(period_key) <> 7
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timesheet_malformed_period_key",
                "fail" if bad_keys else "ok",
                {"rows": [list(row) for row in bad_keys]},
            )

        if "timesheet_export_batches" in tables:
            bad_checksums = conn.execute(
                text(
                    """
                    select batch_id, checksum
                    from timesheet_export_batches
                    where length(checksum) <> 8
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "export_batch_checksum_format",
                "fail" if bad_checksums else "ok",
                {"rows": [list(row) for row in bad_checksums]},
            )

        if "rule_configurations" in tables:
            rule_rows = conn.execute(text("select count(*) from rule_configurations")).scalar() or 0
            add("rule_configuration_rows", "ok" if rule_rows <= 1 else "warn", {"count": int(rule_rows)})

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
