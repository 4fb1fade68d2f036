import csv
from pathlib import Path

import pytest

from app.services.prepare_report import REPORT_FILE_NAME, append_prepare_report, resolve_report_path


def test_append_writes_header_once(tmp_path: Path) -> None:
    report = tmp_path / "reports" / "prepare.csv"

    first = append_prepare_report("SELECT 1", "ok", report)
    append_prepare_report('SELECT "a", b\nFROM t', "needs review, quoted", report)

    assert first == {"reportPath": str(report.resolve()), "appended": True}
    lines = report.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "timestamp,sql,diagnosis"
    with report.open(encoding="utf-8", newline="") as handle:
        rows = list(csv.reader(handle))
    assert len(rows) == 3
    assert rows[1][1:] == ["SELECT 1", "ok"]
    assert rows[2][1:] == ['SELECT "a", b\nFROM t', "needs review, quoted"]


def test_report_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "custom.csv"
    monkeypatch.setenv("MCP_PREPARE_REPORT_PATH", str(target))

    result = append_prepare_report("SELECT 1", "ok")

    assert result["reportPath"] == str(target.resolve())
    assert target.exists()


def test_report_path_defaults_to_working_directory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("MCP_PREPARE_REPORT_PATH", raising=False)
    monkeypatch.chdir(tmp_path)

    assert resolve_report_path().resolve() == (tmp_path / REPORT_FILE_NAME).resolve()
