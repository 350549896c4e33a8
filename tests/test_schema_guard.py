from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy.exc import NoSuchTableError

from app.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        if table_name not in self._columns_by_table:
            raise NoSuchTableError(table_name)
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


def _full_columns() -> dict[str, set[str]]:
    return {table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()}


def _full_enums() -> list[dict[str, object]]:
    return [
        {
            "name": "timesheet_status",
            "labels": [
                "DRAFT",
                "SUBMITTED",
                "MANAGER_APPROVED",
                "MANAGER_REJECTED",
                "PAYROLL_VALIDATED",
                "LOCKED",
            ],
        },
        {"name": "user_role", "labels": ["EMPLOYEE", "MANAGER", "PAYROLL", "ADMIN"]},
    ]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok(self) -> None:
        inspector = _FakeInspector(columns_by_table=_full_columns(), enums=_full_enums())
        with patch("app.services.schema_guard.inspect", return_value=inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_verify_runtime_schema_reports_missing_parts(self) -> None:
        columns = _full_columns()
        columns["timesheet_periods"].discard("revision_no")
        columns["audit_logs"].discard("prev_hash")
        enums = _full_enums()
        enums[0] = {"name": "timesheet_status", "labels": ["DRAFT", "SUBMITTED"]}
        inspector = _FakeInspector(columns_by_table=columns, enums=enums)

        with patch("app.services.schema_guard.inspect", return_value=inspector):
            result = verify_runtime_schema(_FakeEngine(None))

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:timesheet_periods:revision_no", result.issues)
        self.assertIn("MISSING_COLUMNS:audit_logs:prev_hash", result.issues)
        self.assertIn(
            "MISSING_ENUM_VALUES:timesheet_status:LOCKED,MANAGER_APPROVED,MANAGER_REJECTED,PAYROLL_VALIDATED",
            result.issues,
        )
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_missing_table_is_reported(self) -> None:
        columns = _full_columns()
        del columns["planned_leaves"]
        inspector = _FakeInspector(columns_by_table=columns, enums=[])

        with patch("app.services.schema_guard.inspect", return_value=inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["MISSING_TABLE:planned_leaves"])
        self.assertEqual(result.warnings, [])


if __name__ == "__main__":
    unittest.main()
