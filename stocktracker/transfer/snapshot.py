"""
Versioned JSON snapshot of both collections (backup / restore).

Envelope:
  {"version": "1.0.0", "exportDate": "<ISO-8601>", "targets": [...], "actuals": [...]}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from stocktracker.common.errors import ParseError, ValidationError
from stocktracker.common.logging import log_event
from stocktracker.models import Entry

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0.0"

Number = Union[StrictInt, StrictFloat]


class SnapshotEntryV1(BaseModel):
    """
    One stored entry as it appears in a snapshot.

    Every numeric field is required and must be a JSON number (booleans and
    numeric strings are rejected), and finite. Unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    id: Optional[Union[StrictStr, StrictInt]] = None
    year: Number
    month: Number
    investment: Number
    added: Number
    principal: Number
    totalInvestment: Number
    returnPercent: Number
    profit: Number
    total: Number


class SnapshotEnvelopeV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: StrictStr
    exportDate: StrictStr
    targets: list[SnapshotEntryV1]
    actuals: list[SnapshotEntryV1]


@dataclass(frozen=True)
class ImportedSnapshot:
    version: str
    export_date: str
    targets: list[Entry]
    actuals: list[Entry]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def export_snapshot(
    targets: Sequence[Entry],
    actuals: Sequence[Entry],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    ts = now or _utc_now()
    return {
        "version": SNAPSHOT_VERSION,
        "exportDate": ts.isoformat().replace("+00:00", "Z"),
        "targets": [e.to_document() for e in targets],
        "actuals": [e.to_document() for e in actuals],
    }


def dump_snapshot(targets: Sequence[Entry], actuals: Sequence[Entry], *, now: datetime | None = None) -> bytes:
    return json.dumps(export_snapshot(targets, actuals, now=now), indent=2).encode("utf-8")


def snapshot_filename(today: date | None = None) -> str:
    d = today or _utc_now().date()
    return f"stock-tracker-data-{d:%Y-%m-%d}.json"


def _format_errors(e: PydanticValidationError) -> list[str]:
    out: list[str] = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}")
    return out


def _to_entry(model: SnapshotEntryV1) -> Entry:
    data = model.model_dump()
    if isinstance(data["year"], float) and not data["year"].is_integer():
        raise ValueError(f"year must be a whole number, got {data['year']!r}")
    if isinstance(data["month"], float) and not data["month"].is_integer():
        raise ValueError(f"month must be a whole number, got {data['month']!r}")
    return Entry.from_document(data)


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON.
    raise ValueError(f"non-standard JSON constant {name!r}")


def import_snapshot(raw: bytes | str) -> ImportedSnapshot:
    """
    Parse and validate a snapshot. All-or-nothing: any invalid entry rejects
    the whole import.

    Raises:
        ParseError: bytes are not UTF-8 JSON.
        ValidationError: envelope or any entry does not match the schema.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
        data = json.loads(text, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        log_event(logger, "transfer.import_rejected", severity="WARNING", reason="parse_error", error=str(e))
        raise ParseError(f"Failed to parse snapshot file: {e}") from e

    if not isinstance(data, dict):
        log_event(logger, "transfer.import_rejected", severity="WARNING", reason="not_an_object")
        raise ValidationError("Invalid data format", ["snapshot must be a JSON object"])

    try:
        envelope = SnapshotEnvelopeV1.model_validate(data)
    except PydanticValidationError as e:
        errors = _format_errors(e)
        log_event(logger, "transfer.import_rejected", severity="WARNING", reason="validation", errors=errors[:20])
        raise ValidationError("Invalid data format", errors) from e

    if not envelope.version or not envelope.exportDate:
        raise ValidationError("Invalid data format", ["version and exportDate must be non-empty"])

    try:
        targets = [_to_entry(m) for m in envelope.targets]
        actuals = [_to_entry(m) for m in envelope.actuals]
    except ValueError as e:
        log_event(logger, "transfer.import_rejected", severity="WARNING", reason="entry_value", error=str(e))
        raise ValidationError("Invalid data format", [str(e)]) from e

    log_event(logger, "transfer.snapshot_parsed", targets=len(targets), actuals=len(actuals))
    return ImportedSnapshot(
        version=envelope.version,
        export_date=envelope.exportDate,
        targets=targets,
        actuals=actuals,
    )


def fill_missing_ids(entries: Sequence[Entry], id_factory: Callable[[], str]) -> list[Entry]:
    return [e if e.id else e.with_id(id_factory()) for e in entries]
