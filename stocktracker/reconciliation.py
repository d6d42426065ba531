from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Optional, Sequence

from stocktracker.common.logging import log_event
from stocktracker.models import CalendarKey, DisplayRow, Entry, month_name
from stocktracker.sync import SyncCoordinator

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]

# Marks a keyword argument that was not supplied.
_KEEP: Any = object()


def round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _present(value: Optional[float]) -> Optional[float]:
    # A stored 0 means "not entered yet".
    if value is None or value == 0:
        return None
    return value


def merge_for_display(targets: Iterable[Entry], actuals: Iterable[Entry]) -> list[DisplayRow]:
    """
    Join each target with the actual for the same (year, month).

    Rows are sorted by (year, month). Actual investment/added/total of exactly 0
    are reported as None.
    """
    by_key: dict[CalendarKey, Entry] = {}
    for a in actuals:
        by_key[a.key] = a

    rows: list[DisplayRow] = []
    for t in targets:
        a = by_key.get(t.key)
        rows.append(
            DisplayRow(
                target=t,
                actual_investment=_present(a.investment) if a else None,
                actual_added=_present(a.added) if a else None,
                actual_total=_present(a.total) if a else None,
            )
        )
    rows.sort(key=lambda r: r.key)
    return rows


def build_actual_entry(row: DisplayRow, *, entry_id: Optional[str]) -> Entry:
    """Derive the stored actual for a display row; absent inputs count as 0."""
    total_investment = (row.actual_investment or 0) + (row.actual_added or 0)
    total = row.actual_total
    profit = total - total_investment if total else 0
    return_percent = round2(profit / total_investment * 100) if total_investment else 0.0
    return Entry(
        id=entry_id,
        year=row.year,
        month=row.month,
        investment=row.actual_investment or 0,
        added=row.actual_added or 0,
        principal=total_investment,
        total_investment=total_investment,
        return_percent=return_percent,
        profit=profit,
        total=total or 0,
    )


def variance(actual: Optional[float], target: float) -> float:
    if actual is None:
        return 0.0
    return actual - target


def variance_direction(actual: Optional[float], target: float) -> str:
    if actual is None:
        return ""
    v = actual - target
    if v > 0:
        return "positive"
    if v < 0:
        return "negative"
    return ""


def actual_total_invested(row: DisplayRow) -> Optional[float]:
    if row.actual_investment is None or row.actual_added is None:
        return None
    return row.actual_investment + row.actual_added


def actual_profit(row: DisplayRow) -> Optional[float]:
    invested = actual_total_invested(row)
    if invested is None or row.actual_total is None:
        return None
    return row.actual_total - invested


def actual_return_percent(row: DisplayRow) -> Optional[float]:
    invested = actual_total_invested(row)
    profit = actual_profit(row)
    if invested is None or profit is None:
        return None
    if invested == 0:
        return 0.0
    return profit / invested * 100


def format_currency(value: Optional[float]) -> str:
    if value is None:
        return "-"
    whole = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{int(whole):,}"


def available_years(rows: Iterable[DisplayRow]) -> list[int]:
    return sorted({r.year for r in rows})


def filter_by_years(rows: Sequence[DisplayRow], years: Iterable[int] | None) -> list[DisplayRow]:
    selected = set(years or ())
    if not selected:
        return list(rows)
    return [r for r in rows if r.year in selected]


@dataclass(frozen=True)
class PerformanceSummary:
    filled_count: int
    cumulative_invested: float
    cumulative_total: float
    overall_profit: float
    overall_return_percent: float
    average_annualized_return: float
    overall_variance: float


def summarize(rows: Sequence[DisplayRow]) -> PerformanceSummary:
    """
    Aggregate actual performance over an already date-ordered row subset.

    "Cumulative" values come from the last qualifying row in sequence order, not
    from a search for the latest date. The annualized figure is the linear
    approximation overall_return% / filled_months * 12, not a CAGR.
    """
    filled_count = sum(1 for r in rows if r.actual_total is not None and r.actual_investment is not None)

    invested_rows = [r for r in rows if r.actual_investment is not None and r.actual_added is not None]
    cumulative_invested = 0.0
    if invested_rows:
        last = invested_rows[-1]
        cumulative_invested = (last.actual_investment or 0) + (last.actual_added or 0)

    total_rows = [r for r in rows if r.actual_total is not None]
    cumulative_total = (total_rows[-1].actual_total or 0) if total_rows else 0.0
    overall_variance = ((total_rows[-1].actual_total or 0) - total_rows[-1].target.total) if total_rows else 0.0

    overall_profit = cumulative_total - cumulative_invested
    overall_return = overall_profit / cumulative_invested * 100 if cumulative_invested else 0.0
    average_annualized = overall_return / filled_count * 12 if filled_count else 0.0

    return PerformanceSummary(
        filled_count=filled_count,
        cumulative_invested=cumulative_invested,
        cumulative_total=cumulative_total,
        overall_profit=overall_profit,
        overall_return_percent=overall_return,
        average_annualized_return=average_annualized,
        overall_variance=overall_variance,
    )


class ReconciliationEngine:
    """
    Display rows over the coordinator's live collections, plus actual edits.

    Rows are re-merged whenever either collection changes. Edits go back through
    the coordinator; the engine never owns stored state.
    """

    def __init__(self, coordinator: SyncCoordinator, *, notify: Notify | None = None) -> None:
        self._coordinator = coordinator
        self._notify = notify
        self.rows: list[DisplayRow] = []
        self._unsubscribes = [
            coordinator.targets.subscribe(lambda _v: self.refresh()),
            coordinator.actuals.subscribe(lambda _v: self.refresh()),
        ]

    def refresh(self) -> list[DisplayRow]:
        self.rows = merge_for_display(self._coordinator.get_targets(), self._coordinator.get_actuals())
        return self.rows

    def close(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    def find_row(self, year: int, month: int) -> Optional[DisplayRow]:
        for r in self.rows:
            if r.key == (int(year), int(month)):
                return r
        return None

    def _index_of(self, key: CalendarKey) -> int:
        for i, r in enumerate(self.rows):
            if r.key == key:
                return i
        return -1

    async def _upsert(self, row: DisplayRow) -> Entry:
        existing = next((a for a in self._coordinator.get_actuals() if a.key == row.key), None)
        if existing is not None:
            return await self._coordinator.update_actual(build_actual_entry(row, entry_id=existing.id))
        return await self._coordinator.add_actual(build_actual_entry(row, entry_id=self._coordinator.new_id()))

    async def record_actual(self, row: DisplayRow, *, notify: bool = True) -> Entry:
        """
        Upsert the actual for `row`, then carry its total forward.

        While the saved row has an actual total, the next row (by position in the
        current sorted rows) gets that total as its actual investment and is saved
        the same way, silently. The walk stops after saving a row with no total or
        at the end of the sequence.
        """
        saved = await self._upsert(row)

        current = row
        remaining = len(self.rows)
        while current.actual_total is not None and remaining > 0:
            remaining -= 1
            idx = self._index_of(current.key)
            if idx < 0 or idx >= len(self.rows) - 1:
                break
            nxt = self.rows[idx + 1]
            nxt.actual_investment = current.actual_total
            log_event(
                logger,
                "reconcile.cascade",
                severity="DEBUG",
                source=f"{current.year}-{current.month:02d}",
                target=f"{nxt.year}-{nxt.month:02d}",
                investment=current.actual_total,
            )
            await self._upsert(nxt)
            current = nxt

        if notify and self._notify is not None:
            self._notify("saved", f"Year {row.year}, Month {row.month} updated")
        return saved

    async def record_actual_values(
        self,
        year: int,
        month: int,
        *,
        investment: Optional[float] = _KEEP,
        added: Optional[float] = _KEEP,
        total: Optional[float] = _KEEP,
        notify: bool = True,
    ) -> Entry:
        """Edit one or more actual fields of a month; omitted fields keep their value."""
        row = self.find_row(year, month)
        if row is None:
            raise KeyError(f"no target row for {year}-{month:02d}")
        if investment is not _KEEP:
            row.actual_investment = investment
        if added is not _KEEP:
            row.actual_added = added
        if total is not _KEEP:
            row.actual_total = total
        return await self.record_actual(row, notify=notify)

    async def clear_row(self, row: DisplayRow) -> bool:
        """
        Remove the stored actual for the row's month.

        Values this row previously pushed into the next month's investment are
        left as they are.
        """
        row.actual_investment = None
        row.actual_added = None
        row.actual_total = None
        existing = next((a for a in self._coordinator.get_actuals() if a.key == row.key), None)
        if existing is None or existing.id is None:
            return False
        await self._coordinator.delete_actual(existing.id)
        if self._notify is not None:
            self._notify("cleared", f"{month_name(row.month)} {row.year} data cleared")
        return True
