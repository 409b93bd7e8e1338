from decimal import Decimal
from pathlib import Path

import pytest

from app.expedientes import run_summary_cli, telemetry
from app.expedientes.models import CaseRecord, SearchOutcome, ValidationLabel
from tests.test_run import _configure_temp_paths


def _write_run(mode: str = "workbook") -> str:
    run = telemetry.RunTelemetry(mode)
    accepted = CaseRecord(case_id="1001")
    accepted.mark_processed(
        SearchOutcome.found("1001", system_cost=Decimal("500"), validation_label=ValidationLabel.ACCEPTED)
    )
    failed = CaseRecord(case_id="1002")
    failed.mark_failed("Timeout 5000ms exceeded")
    run.add(accepted)
    run.add(failed, phase="search")
    return run.finalize(
        {
            "file_path": "expedientes.xlsx",
            "statistics": {"total": 2, "completed": 1, "failed": 1, "success_rate_percent": 50.0},
        }
    )


def test_run_summary_cli_prints_summary(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    path = _write_run()

    exit_code = run_summary_cli.main(["--run-file", path])
    assert exit_code == 0

    out = capsys.readouterr().out
    assert "(workbook)" in out
    assert "count_failed: 1" in out
    assert "success_rate_percent: 50.0" in out
    assert "ACCEPTED: 1" in out
    assert "1002 [search]: Timeout 5000ms exceeded" in out


def test_run_summary_cli_latest(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    _write_run("records")

    assert run_summary_cli.main(["--latest"]) == 0
    assert "(records)" in capsys.readouterr().out


def test_run_summary_cli_errors_without_runs(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)

    with pytest.raises(SystemExit) as excinfo:
        run_summary_cli.main(["--latest"])

    assert excinfo.value.code == 2
    assert "No run telemetry found" in capsys.readouterr().err


def test_run_summary_cli_requires_a_selector(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit):
        run_summary_cli.main([])
    assert "--run-file or --latest" in capsys.readouterr().err
