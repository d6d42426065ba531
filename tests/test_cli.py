from __future__ import annotations

import json
from pathlib import Path

import pytest

from stocktracker import cli


@pytest.fixture()
def data_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "tracker.json"
    monkeypatch.setenv("STOCKTRACKER_STORE", "local")
    monkeypatch.setenv("STOCKTRACKER_DATA_FILE", str(path))
    monkeypatch.setenv("STOCKTRACKER_HORIZON_MONTHS", "24")
    monkeypatch.delenv("STOCKTRACKER_UID", raising=False)
    monkeypatch.delenv("STOCKTRACKER_ID_TOKEN", raising=False)
    # Keep pytest's capture handlers in place.
    monkeypatch.setattr(cli, "init_structured_logging", lambda **_kw: None)
    return path


def test_project_record_and_summary(data_file: Path, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["--uid", "u1", "project"]) == 0
    assert "24 target months" in capsys.readouterr().out
    assert data_file.exists()

    assert cli.main(
        ["--uid", "u1", "record", "--year", "2025", "--month", "1",
         "--investment", "100000", "--added", "3500", "--total", "105000"]
    ) == 0
    out = capsys.readouterr().out
    assert "[saved] Year 2025, Month 1 updated" in out
    assert "Jan 2025: investment=100,000 added=3,500 total=105,000" in out

    assert cli.main(["--uid", "u1", "summary", "--year", "2025"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["filled_count"] == 1
    assert summary["cumulative_invested"] == 103500
    assert summary["cumulative_total"] == 105000


def test_json_export_then_import(data_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    out_dir = tmp_path / "exports"
    assert cli.main(["--uid", "u1", "export-json", "--out", str(out_dir)]) == 0
    capsys.readouterr()
    [snapshot] = list(out_dir.glob("stock-tracker-data-*.json"))

    assert cli.main(["--uid", "u2", "import-json", str(snapshot)]) == 0
    assert "Imported 24 targets and 0 actuals" in capsys.readouterr().out


def test_invalid_snapshot_exits_with_error(data_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"version": "1.0.0"}), encoding="utf-8")

    assert cli.main(["--uid", "u1", "import-json", str(bad)]) == 2
    assert "Invalid data format" in capsys.readouterr().err


def test_xlsx_export_and_import(data_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    from openpyxl import load_workbook

    out_dir = tmp_path / "xlsx"
    assert cli.main(["--uid", "u1", "export-xlsx", "--out", str(out_dir)]) == 0
    [path] = list(out_dir.glob("Portfolio_Data_*.xlsx"))

    wb = load_workbook(path)
    ws = wb.active
    ws["D2"] = 100000
    ws["F2"] = 3500
    ws["P2"] = 105000
    wb.save(path)
    capsys.readouterr()

    assert cli.main(["--uid", "u1", "import-xlsx", str(path)]) == 0
    assert "24 rows imported successfully" in capsys.readouterr().out

    assert cli.main(["--uid", "u1", "rows"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert rows[0]["Actual Total"] == 105000
    assert rows[1]["Actual Investment"] == 105000


def test_clear_row_and_reset(data_file: Path, capsys: pytest.CaptureFixture[str]):
    cli.main(["--uid", "u1", "record", "--year", "2025", "--month", "3", "--total", "1"])
    capsys.readouterr()

    assert cli.main(["--uid", "u1", "clear-row", "--year", "2025", "--month", "3"]) == 0
    assert "[cleared] Mar 2025 data cleared" in capsys.readouterr().out

    assert cli.main(["--uid", "u1", "clear-row", "--year", "2025", "--month", "5"]) == 0
    assert "nothing to clear" in capsys.readouterr().out

    assert cli.main(["--uid", "u1", "reset"]) == 0
    assert "projection regenerated" in capsys.readouterr().out


def test_uid_is_required(data_file: Path):
    with pytest.raises(SystemExit):
        cli.main(["project"])
