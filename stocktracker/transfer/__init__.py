"""
Moving data in and out of the tracker: versioned JSON snapshots and
spreadsheet rows.
"""

from __future__ import annotations

from .snapshot import (
    SNAPSHOT_VERSION,
    ImportedSnapshot,
    dump_snapshot,
    export_snapshot,
    fill_missing_ids,
    import_snapshot,
    snapshot_filename,
)
from .tabular import (
    COLUMNS,
    TabularImportResult,
    export_tabular_rows,
    import_tabular_rows,
    read_workbook_rows,
    workbook_filename,
    write_workbook,
)

__all__ = [
    "COLUMNS",
    "ImportedSnapshot",
    "SNAPSHOT_VERSION",
    "TabularImportResult",
    "dump_snapshot",
    "export_snapshot",
    "export_tabular_rows",
    "fill_missing_ids",
    "import_snapshot",
    "import_tabular_rows",
    "read_workbook_rows",
    "snapshot_filename",
    "workbook_filename",
    "write_workbook",
]
