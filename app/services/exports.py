from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from app.errors import ApiError
from app.services.period_state import ExportBatch, PeriodState
from app.services.timesheet_calc import PeriodComputation, TimesheetTotals, line_hours

DAILY_HEADERS = [
    "Date",
    "Day Type",
    "Projects",
    "Absence",
    "Normal",
    "Overtime",
    "PH Worked",
    "Leave",
    "Paid",
    "Exceptions",
]
WEEKLY_HEADERS = ["Week", "Normal", "Overtime", "PH Worked", "Leave", "Paid"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FCFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUCCESS_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def minutes_to_hhmm(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60:02d}:{value % 60:02d}"


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 60)


def _style_metadata_rows(ws: Worksheet, *, start_row: int, end_row: int) -> None:
    for row_idx in range(start_row, end_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER
        value_cell.alignment = Alignment(horizontal="left", vertical="center")


def _style_table_rows(ws: Worksheet, *, header_row: int, data_end_row: int, flag_col: int | None = None) -> None:
    ws.freeze_panes = f"A{header_row + 1}"
    if data_end_row <= header_row:
        return
    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(ws.max_column)}{data_end_row}"

    for row_idx in range(header_row + 1, data_end_row + 1):
        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_idx % 2 == 0:
                cell.fill = ZEBRA_FILL
        if flag_col is not None and ws.cell(row=row_idx, column=flag_col).value not in {None, "", "-"}:
            flag_cell = ws.cell(row=row_idx, column=flag_col)
            flag_cell.fill = ALERT_FILL
            flag_cell.font = Font(bold=True, color="9F1239")


def _totals_row(label: str, totals: TimesheetTotals) -> list[str]:
    return [
        label,
        minutes_to_hhmm(totals.normal_minutes),
        minutes_to_hhmm(totals.overtime_minutes),
        minutes_to_hhmm(totals.ph_worked_minutes),
        minutes_to_hhmm(totals.leave_minutes),
        minutes_to_hhmm(totals.paid_minutes),
    ]


def _build_meta_sheet(ws: Worksheet, state: PeriodState, computation: PeriodComputation, batch: ExportBatch) -> None:
    ws.title = "Meta"
    ws.append(["Monthly Timesheet Export"])
    ws["A1"].font = TITLE_FONT
    rows = [
        ("Employee", state.employee_id),
        ("Period", state.period_key),
        ("Status", state.status.value),
        ("Revision", state.revision_no),
        ("Batch ID", batch.batch_id),
        ("Batch Created (UTC)", _to_excel_datetime(batch.created_at)),
        ("Line Count", batch.line_count),
        ("Checksum", batch.checksum),
        (
            "Employee Signature",
            state.employee_signature.signature_hash if state.employee_signature is not None else "-",
        ),
        (
            "Manager Signature",
            state.manager_signature.signature_hash if state.manager_signature is not None else "-",
        ),
        ("Manager Note", state.manager_note or "-"),
        ("Paid Hours", minutes_to_hhmm(computation.period_totals.paid_minutes)),
    ]
    for label, value in rows:
        ws.append([label, value])
    _style_metadata_rows(ws, start_row=2, end_row=len(rows) + 1)
    _auto_width(ws)


def _build_daily_sheet(ws: Worksheet, state: PeriodState, computation: PeriodComputation) -> None:
    ws.append(DAILY_HEADERS)
    _style_header(ws)

    codes_by_date: dict[object, list[str]] = {}
    for exception in computation.exceptions:
        codes_by_date.setdefault(exception.date, []).append(exception.code)

    for entry in sorted(state.day_entries, key=lambda item: item.date):
        result = computation.by_date.get(entry.date)
        totals = result.totals if result is not None else TimesheetTotals()
        projects = "; ".join(
            f"{(line.description or '-').strip()} ({line_hours(line):.2f}h)"
            for line in entry.project_lines
            if line_hours(line) > 0
        )
        ws.append(
            [
                entry.date.isoformat(),
                entry.day_type.value,
                projects or "-",
                entry.absence_code or "-",
                minutes_to_hhmm(totals.normal_minutes),
                minutes_to_hhmm(totals.overtime_minutes),
                minutes_to_hhmm(totals.ph_worked_minutes),
                minutes_to_hhmm(totals.leave_minutes),
                minutes_to_hhmm(totals.paid_minutes),
                ", ".join(codes_by_date.get(entry.date, [])) or "-",
            ]
        )

    data_end_row = ws.max_row
    label, *buckets = _totals_row("TOTAL", computation.period_totals)
    ws.append([label, "", "", "", *buckets, ""])
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER
    _style_table_rows(ws, header_row=1, data_end_row=data_end_row, flag_col=len(DAILY_HEADERS))
    _auto_width(ws)


def _build_weekly_sheet(ws: Worksheet, computation: PeriodComputation) -> None:
    ws.append(WEEKLY_HEADERS)
    _style_header(ws)
    for weekly in computation.weekly:
        ws.append(_totals_row(weekly.week_label, weekly.totals))
    data_end_row = ws.max_row
    ws.append(_totals_row("TOTAL", computation.period_totals))
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.fill = SUCCESS_FILL
        cell.border = THIN_BORDER
    _style_table_rows(ws, header_row=1, data_end_row=data_end_row)
    _auto_width(ws)


def build_period_xlsx_bytes(
    state: PeriodState,
    computation: PeriodComputation,
    batch: ExportBatch | None = None,
) -> bytes:
    if batch is None:
        if not state.export_batches:
            raise ApiError(
                status_code=409,
                code="EXPORT_BATCH_REQUIRED",
                message="Create an export batch before downloading the payroll workbook.",
            )
        batch = state.export_batches[0]

    wb = Workbook()
    _build_meta_sheet(wb.active, state, computation, batch)
    _build_daily_sheet(wb.create_sheet("Daily"), state, computation)
    _build_weekly_sheet(wb.create_sheet("Weekly"), computation)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
