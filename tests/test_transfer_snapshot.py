from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from stocktracker.common.errors import ParseError, ValidationError
from stocktracker.models import Entry
from stocktracker.transfer import (
    SNAPSHOT_VERSION,
    dump_snapshot,
    export_snapshot,
    fill_missing_ids,
    import_snapshot,
    snapshot_filename,
)
from stocktracker.transfer.snapshot import SnapshotEntryV1


def _entry_doc(**overrides):
    doc = {
        "id": "e1",
        "year": 2025,
        "month": 1,
        "investment": 100000,
        "added": 3500,
        "principal": 103500,
        "totalInvestment": 103500,
        "returnPercent": 1.6,
        "profit": 1656,
        "total": 105156,
    }
    doc.update(overrides)
    return doc


def _envelope(targets=None, actuals=None, **overrides) -> str:
    data = {
        "version": "1.0.0",
        "exportDate": "2025-03-01T12:00:00Z",
        "targets": targets if targets is not None else [_entry_doc()],
        "actuals": actuals if actuals is not None else [],
    }
    data.update(overrides)
    return json.dumps(data)


def test_export_envelope_shape():
    targets = [Entry(year=2025, month=1, total=5, id="t1")]
    now = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    out = export_snapshot(targets, [], now=now)

    assert out["version"] == SNAPSHOT_VERSION == "1.0.0"
    assert out["exportDate"] == "2025-03-01T12:00:00Z"
    assert out["targets"][0]["id"] == "t1"
    assert out["targets"][0]["totalInvestment"] == 0.0
    assert out["actuals"] == []


def test_dump_is_indented_json():
    raw = dump_snapshot([], [], now=datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert raw.startswith(b"{\n  ")
    assert json.loads(raw)["targets"] == []


def test_import_reads_entries_and_ignores_unknown_keys():
    snap = import_snapshot(_envelope(targets=[_entry_doc(note="x"), _entry_doc(id=7, month=2)]).encode())

    assert snap.version == "1.0.0"
    assert snap.export_date == "2025-03-01T12:00:00Z"
    assert [t.id for t in snap.targets] == ["e1", "7"]
    assert snap.targets[0].total_investment == 103500
    assert snap.actuals == []


def test_import_allows_missing_id():
    snap = import_snapshot(_envelope(actuals=[{k: v for k, v in _entry_doc().items() if k != "id"}]))

    assert snap.actuals[0].id is None


@pytest.mark.parametrize(
    "raw",
    [b"", b"{not json", b"\xff\xfe\x00"],
)
def test_unparseable_bytes_raise_parse_error(raw):
    with pytest.raises(ParseError):
        import_snapshot(raw)


@pytest.mark.parametrize(
    "raw",
    [
        json.dumps([]),
        _envelope(version=""),
        _envelope(exportDate=""),
        _envelope(targets=[_entry_doc(profit=None)]),
        _envelope(targets=[_entry_doc(profit=True)]),
        _envelope(targets=[_entry_doc(total="105156")]),
        _envelope(targets=[_entry_doc(month=1.5)]),
        _envelope(targets=[_entry_doc(month=13)]),
        _envelope(actuals="nope"),
        json.dumps({"version": "1.0.0", "exportDate": "x", "targets": []}),
    ],
)
def test_invalid_snapshots_raise_validation_error(raw):
    with pytest.raises(ValidationError):
        import_snapshot(raw)


def test_validation_error_lists_offending_field():
    doc = _entry_doc()
    del doc["principal"]

    with pytest.raises(ValidationError) as excinfo:
        import_snapshot(_envelope(actuals=[doc]))

    assert excinfo.value.errors
    assert "actuals.0.principal" in excinfo.value.errors[0]


def test_fill_missing_ids_keeps_existing_ids():
    entries = [Entry(year=2025, month=1, id="keep"), Entry(year=2025, month=2)]

    out = fill_missing_ids(entries, lambda: "new")

    assert [e.id for e in out] == ["keep", "new"]


def test_snapshot_filename():
    assert snapshot_filename(date(2025, 1, 5)) == "stock-tracker-data-2025-01-05.json"


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_numbers_are_rejected(literal):
    raw = _envelope().replace('"investment": 100000', f'"investment": {literal}')
    assert literal in raw

    with pytest.raises(ParseError):
        import_snapshot(raw.encode())


def test_entry_model_rejects_non_finite_floats():
    with pytest.raises(PydanticValidationError):
        SnapshotEntryV1.model_validate(_entry_doc(investment=float("nan")))
    with pytest.raises(PydanticValidationError):
        SnapshotEntryV1.model_validate(_entry_doc(total=float("inf")))
