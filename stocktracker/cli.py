"""
Command line for the plan tracker.

Examples:
  STOCKTRACKER_DATA_FILE=data/tracker.json python -m stocktracker --uid me project
  python -m stocktracker --uid me record --year 2025 --month 1 --investment 100000 --added 3500 --total 105000
  python -m stocktracker --uid me summary --year 2025
  python -m stocktracker --uid me export-xlsx --out exports/
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Sequence

from stocktracker.common.config import Settings
from stocktracker.common.errors import StockTrackerError
from stocktracker.common.logging import init_structured_logging, log_event
from stocktracker.identity import FirebaseIdentityProvider, IdentityProvider, LocalIdentityProvider
from stocktracker.models import month_name
from stocktracker.persistence import build_store
from stocktracker.reconciliation import format_currency
from stocktracker.sync import SyncCoordinator
from stocktracker.tracker import PortfolioTracker
from stocktracker.transfer import read_workbook_rows, snapshot_filename, workbook_filename, write_workbook

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stocktracker", description="Track an investment plan against actual results.")
    p.add_argument("--uid", default=os.getenv("STOCKTRACKER_UID"), help="User id (local identity)")
    p.add_argument(
        "--id-token",
        default=os.getenv("STOCKTRACKER_ID_TOKEN"),
        help="Firebase ID token; verified instead of trusting --uid",
    )
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("project", help="Generate the default projection if no targets exist yet")

    s = sub.add_parser("summary", help="Print actual performance summary")
    s.add_argument("--year", type=int, action="append", default=[], help="Restrict to year (repeatable)")

    sub.add_parser("rows", help="Print merged monthly rows as JSON")

    r = sub.add_parser("record", help="Record actual figures for one month")
    r.add_argument("--year", type=int, required=True)
    r.add_argument("--month", type=int, required=True)
    r.add_argument("--investment", type=float)
    r.add_argument("--added", type=float)
    r.add_argument("--total", type=float)

    c = sub.add_parser("clear-row", help="Remove the actual figures for one month")
    c.add_argument("--year", type=int, required=True)
    c.add_argument("--month", type=int, required=True)

    sub.add_parser("reset", help="Delete all data and regenerate the projection")

    ej = sub.add_parser("export-json", help="Write a JSON snapshot")
    ej.add_argument("--out", default=".", help="Output directory")

    ij = sub.add_parser("import-json", help="Replace all data from a JSON snapshot")
    ij.add_argument("path")

    ex = sub.add_parser("export-xlsx", help="Write the monthly rows as a spreadsheet")
    ex.add_argument("--out", default=".", help="Output directory")

    ix = sub.add_parser("import-xlsx", help="Patch actual figures from a spreadsheet")
    ix.add_argument("path")
    return p


def _identity_provider(args: argparse.Namespace) -> IdentityProvider:
    if args.id_token:
        return FirebaseIdentityProvider()
    return LocalIdentityProvider()


async def _sign_in(provider: IdentityProvider, args: argparse.Namespace) -> None:
    if isinstance(provider, FirebaseIdentityProvider):
        await provider.sign_in_with_id_token(args.id_token)
    elif isinstance(provider, LocalIdentityProvider):
        await provider.sign_in(args.uid)


def _notify(kind: str, detail: str) -> None:
    print(f"[{kind}] {detail}")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(settings)
    provider = _identity_provider(args)
    coordinator = SyncCoordinator(store, provider)
    tracker = PortfolioTracker(coordinator, params=settings.projection, notify=_notify)
    await coordinator.start()
    try:
        await _sign_in(provider, args)
        await coordinator.wait_until_ready()
        if args.command != "import-json":
            await tracker.ensure_projection()

        cmd = args.command
        if cmd == "project":
            print(f"{len(coordinator.get_targets())} target months")
        elif cmd == "summary":
            summary = tracker.summary(args.year)
            print(json.dumps(asdict(summary), indent=2))
        elif cmd == "rows":
            print(json.dumps(tracker.export_tabular(), indent=2))
        elif cmd == "record":
            fields = {k: getattr(args, k) for k in ("investment", "added", "total") if getattr(args, k) is not None}
            await tracker.record_actual(args.year, args.month, **fields)
            row = tracker.engine.find_row(args.year, args.month)
            if row is not None:
                print(
                    f"{month_name(row.month)} {row.year}: investment={format_currency(row.actual_investment)} "
                    f"added={format_currency(row.actual_added)} total={format_currency(row.actual_total)}"
                )
        elif cmd == "clear-row":
            if not await tracker.clear_row(args.year, args.month):
                print("nothing to clear")
        elif cmd == "reset":
            await tracker.reset()
            print("data cleared and projection regenerated")
        elif cmd == "export-json":
            out = Path(args.out) / snapshot_filename()
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(tracker.export_snapshot_bytes())
            print(f"wrote {out}")
        elif cmd == "import-json":
            counts = await tracker.import_snapshot_bytes(Path(args.path).read_bytes())
            print(f"Imported {counts.targets} targets and {counts.actuals} actuals")
        elif cmd == "export-xlsx":
            out = write_workbook(tracker.export_tabular(), Path(args.out) / workbook_filename())
            print(f"wrote {out}")
        elif cmd == "import-xlsx":
            rows = read_workbook_rows(args.path)
            if not rows:
                print("The Excel file contains no data")
                return 1
            n = await tracker.import_tabular(rows)
            print(f"{n} rows imported successfully")
        return 0
    finally:
        tracker.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.uid and not args.id_token:
        parser.error("--uid (or STOCKTRACKER_UID) is required")
    settings = Settings.from_env()
    init_structured_logging(service="stocktracker", level=settings.log_level)
    try:
        return asyncio.run(_run(args, settings))
    except (StockTrackerError, KeyError) as e:
        log_event(logger, "cli.command_failed", severity="ERROR", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
