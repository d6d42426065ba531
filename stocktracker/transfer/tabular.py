"""
Spreadsheet-row import/export of the display rows.

Row contract (one row per month, exact header strings):
  Year, Month, Target Investment, Actual Investment, Target Added, Actual Added,
  Target Principal, Actual Principal, Target Total Invested, Actual Total Invested,
  Target Return %, Actual Return %, Target Profit, Actual Profit, Target Total,
  Actual Total, Variance

Only the first sheet is read on import. Missing actual values are written as
empty cells, never as 0.
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from stocktracker.common.errors import ParseError
from stocktracker.common.logging import log_event
from stocktracker.models import MONTH_NUMBERS, DisplayRow, month_name
from stocktracker.reconciliation import actual_total_invested, round2

logger = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = (
    "Year",
    "Month",
    "Target Investment",
    "Actual Investment",
    "Target Added",
    "Actual Added",
    "Target Principal",
    "Actual Principal",
    "Target Total Invested",
    "Actual Total Invested",
    "Target Return %",
    "Actual Return %",
    "Target Profit",
    "Actual Profit",
    "Target Total",
    "Actual Total",
    "Variance",
)

COLUMN_WIDTHS: tuple[int, ...] = (6, 8, 18, 18, 14, 14, 16, 16, 20, 20, 14, 14, 14, 14, 14, 14, 12)

SHEET_TITLE = "Portfolio Data"

# Import column -> DisplayRow attribute
_ACTUAL_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Actual Investment", "actual_investment"),
    ("Actual Added", "actual_added"),
    ("Actual Total", "actual_total"),
)


@dataclass(frozen=True)
class TabularImportResult:
    patched_rows: list[DisplayRow]

    @property
    def count(self) -> int:
        return len(self.patched_rows)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_month(value: Any) -> Optional[int]:
    if _is_blank(value):
        return None
    if isinstance(value, str):
        s = value.strip()
        if s in MONTH_NUMBERS:
            return MONTH_NUMBERS[s]
        # Named months must use one of the twelve abbreviations; anything else is skipped.
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and float(value).is_integer() and 1 <= int(value) <= 12:
        return int(value)
    return None


def _parse_year(value: Any) -> Optional[int]:
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if not f.is_integer() or f == 0:
        return None
    return int(f)


def _to_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def import_tabular_rows(rows: Iterable[Mapping[str, Any]], display_rows: Sequence[DisplayRow]) -> TabularImportResult:
    """
    Patch actual values of existing display rows from spreadsheet rows.

    - Rows without a usable Year/Month are skipped.
    - Rows naming a month with no existing target are dropped; no targets are created.
    - Each of Actual Investment / Actual Added / Actual Total is overwritten only
      when present and non-blank; other fields keep their current value.

    The matched `display_rows` objects are modified in place and returned in
    import order; persisting them is the caller's job.
    """
    by_key = {r.key: r for r in display_rows}
    patched: list[DisplayRow] = []
    skipped = 0

    for raw in rows:
        year = _parse_year(raw.get("Year"))
        month = _parse_month(raw.get("Month"))
        if year is None or month is None:
            skipped += 1
            continue
        row = by_key.get((year, month))
        if row is None:
            skipped += 1
            continue

        for column, attr in _ACTUAL_COLUMNS:
            value = raw.get(column)
            if _is_blank(value):
                continue
            number = _to_number(value)
            if number is None:
                continue
            setattr(row, attr, number)
        patched.append(row)

    log_event(logger, "transfer.tabular_import", severity="DEBUG", patched=len(patched), skipped=skipped)
    return TabularImportResult(patched_rows=patched)


def export_tabular_rows(display_rows: Sequence[DisplayRow]) -> list[dict[str, Any]]:
    """One row per target; actual-derived columns are None when their inputs are missing."""
    out: list[dict[str, Any]] = []
    for row in display_rows:
        t = row.target
        combined = (row.actual_investment or 0) + (row.actual_added or 0)
        profit = row.actual_total - combined if row.actual_total else None
        return_pct = round2((row.actual_total - combined) / combined * 100) if combined > 0 and row.actual_total else None
        invested = actual_total_invested(row)

        out.append(
            {
                "Year": row.year,
                "Month": month_name(row.month),
                "Target Investment": t.investment,
                "Actual Investment": row.actual_investment,
                "Target Added": t.added,
                "Actual Added": row.actual_added,
                "Target Principal": t.principal,
                "Actual Principal": invested,
                "Target Total Invested": t.total_investment,
                "Actual Total Invested": invested,
                "Target Return %": t.return_percent,
                "Actual Return %": return_pct,
                "Target Profit": t.profit,
                "Actual Profit": profit,
                "Target Total": t.total,
                "Actual Total": row.actual_total,
                "Variance": row.actual_total - t.total if row.actual_total is not None else None,
            }
        )
    return out


def workbook_filename(today: date | None = None) -> str:
    d = today or datetime.now(timezone.utc).date()
    return f"Portfolio_Data_{d:%Y-%m-%d}.xlsx"


def read_workbook_rows(source: str | os.PathLike[str] | bytes) -> list[dict[str, Any]]:
    """
    Read the first sheet of an .xlsx workbook as dicts keyed by the header row.

    Raises:
        ParseError: the file cannot be opened as a workbook.
    """
    try:
        if isinstance(source, (bytes, bytearray)):
            wb = load_workbook(io.BytesIO(source), read_only=True, data_only=True)
        else:
            wb = load_workbook(Path(source), read_only=True, data_only=True)
    except Exception as e:
        log_event(logger, "transfer.import_rejected", severity="WARNING", reason="workbook_unreadable", error=str(e))
        raise ParseError(f"Could not read the Excel file: {type(e).__name__}: {e}") from e

    try:
        ws = wb[wb.sheetnames[0]]
        it = ws.iter_rows(values_only=True)
        header_row = next(it, None)
        if not header_row:
            return []
        headers = [str(h).strip() if h is not None else "" for h in header_row]

        out: list[dict[str, Any]] = []
        for values in it:
            if values is None or all(_is_blank(v) for v in values):
                continue
            out.append({h: v for h, v in zip(headers, values) if h})
        return out
    finally:
        wb.close()


def write_workbook(rows: Sequence[Mapping[str, Any]], path: str | os.PathLike[str]) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append(list(COLUMNS))
    for row in rows:
        ws.append([row.get(c) for c in COLUMNS])
    for idx, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    wb.save(out)
    log_event(logger, "transfer.workbook_written", path=str(out), rows=len(rows))
    return out
