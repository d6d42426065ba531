from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from stocktracker.common.config import ProjectionParams
from stocktracker.common.logging import log_event
from stocktracker.models import DisplayRow, Entry
from stocktracker.projection import generate_from_params
from stocktracker.reconciliation import (
    Notify,
    PerformanceSummary,
    ReconciliationEngine,
    filter_by_years,
    summarize,
)
from stocktracker.sync import SyncCoordinator
from stocktracker.transfer import (
    dump_snapshot,
    export_tabular_rows,
    fill_missing_ids,
    import_snapshot,
    import_tabular_rows,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportCounts:
    targets: int
    actuals: int


class PortfolioTracker:
    """
    The plan tracker as a whole: projection on first use, monthly edits,
    resets and imports, all routed through one `SyncCoordinator`.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        *,
        params: ProjectionParams | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.params = params or ProjectionParams()
        self.engine = ReconciliationEngine(coordinator, notify=notify)

    @property
    def rows(self) -> list[DisplayRow]:
        return self.engine.rows

    def close(self) -> None:
        self.engine.close()
        self.coordinator.close()

    async def ensure_projection(self) -> bool:
        """
        Generate and store the default projection when the signed-in user has no
        targets yet. Returns True when a projection was written.
        """
        await self.coordinator.wait_until_ready()
        if self.coordinator.identity is None or self.coordinator.get_targets():
            return False
        targets = generate_from_params(self.params)
        await self.coordinator.set_targets(targets)
        log_event(logger, "tracker.projection_generated", count=len(targets), start_year=self.params.start_year)
        return True

    async def record_actual(self, year: int, month: int, **fields: Optional[float]) -> Entry:
        return await self.engine.record_actual_values(year, month, **fields)

    async def clear_row(self, year: int, month: int) -> bool:
        row = self.engine.find_row(year, month)
        if row is None:
            raise KeyError(f"no target row for {year}-{month:02d}")
        return await self.engine.clear_row(row)

    async def reset(self) -> None:
        """Delete everything, then regenerate the default projection."""
        await self.coordinator.clear_all()
        await self.coordinator.set_targets(generate_from_params(self.params))
        log_event(logger, "tracker.reset", count=self.params.count)

    def summary(self, years: Iterable[int] | None = None) -> PerformanceSummary:
        return summarize(filter_by_years(self.rows, years))

    # --- import / export --------------------------------------------------

    def export_snapshot_bytes(self) -> bytes:
        return dump_snapshot(self.coordinator.get_targets(), self.coordinator.get_actuals())

    async def import_snapshot_bytes(self, raw: bytes | str) -> ImportCounts:
        """
        Replace both collections with a validated snapshot.

        Parse and validation errors are raised before anything is written.
        """
        snap = import_snapshot(raw)
        targets = fill_missing_ids(snap.targets, self.coordinator.new_id)
        actuals = fill_missing_ids(snap.actuals, self.coordinator.new_id)
        await self.coordinator.set_targets(targets)
        await self.coordinator.set_actuals(actuals)
        return ImportCounts(targets=len(targets), actuals=len(actuals))

    def export_tabular(self) -> list[dict[str, Any]]:
        return export_tabular_rows(self.rows)

    async def import_tabular(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Patch actual values from spreadsheet rows and save each matched month
        silently (the forward cascade applies).

        Rows are applied one at a time against the current display rows so a
        value cascaded from an earlier row is visible to the next one.
        """
        count = 0
        for raw in rows:
            result = import_tabular_rows([raw], self.rows)
            for row in result.patched_rows:
                await self.engine.record_actual(row, notify=False)
            count += result.count
        log_event(logger, "tracker.tabular_imported", count=count)
        return count
