from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional

import pytest
from openpyxl import Workbook, load_workbook

from app.expedientes import config
from app.expedientes.errors import ValidationError
from app.expedientes.models import CaseRecord, SearchOutcome, ValidationLabel
from app.expedientes.workbook import (
    WritebackColumns,
    get_file_info,
    read_records,
    restore_written_results,
    validate_workbook,
    validate_workbook_path,
    write_back_records,
)

HEADER = ["Expediente", "Costo guardado", "Nombre", "Estatus", "Notas", "Fecha", "Servicio", "Subservicio", "Extra"]


def _make_workbook(path: Path, rows: Iterable[List[Optional[object]]], *, header: bool = True) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Expedientes"
    if header:
        sheet.append(HEADER)
    for row in rows:
        sheet.append(list(row))
    workbook.save(path)
    return path


def _processed(record: CaseRecord, **outcome_kwargs) -> CaseRecord:
    outcome = SearchOutcome.found(
        record.case_id,
        system_cost=outcome_kwargs.pop("system_cost", Decimal("1234.5")),
        status="Activo",
        notes="Sin notas",
        registration_date="01/02/2024",
        service="Grúa",
        subservice="Arrastre",
        **outcome_kwargs,
    )
    record.mark_processed(outcome)
    return record


def test_read_records_skips_header_and_blank_ids(tmp_path: Path) -> None:
    path = _make_workbook(
        tmp_path / "input.xlsx",
        [
            ["1001", 500, "Ana"],
            [None, 300, "sin id"],
            ["   ", 300, "espacios"],
            [1002, "no es número", None],
            ["1003", None, "Luis"],
            ["1004", "NaN", "Eva"],
            ["1005", "Infinity", "Raúl"],
        ],
    )

    records = read_records(path)

    assert [record.case_id for record in records] == ["1001", "1002", "1003", "1004", "1005"]
    assert records[0].saved_cost == Decimal("500")
    assert records[0].name == "Ana"
    assert records[0].row_number == 2
    assert records[1].saved_cost == Decimal("0")
    assert records[2].saved_cost == Decimal("0")
    assert records[2].row_number == 6
    assert records[3].saved_cost == Decimal("0")
    assert records[4].saved_cost == Decimal("0")


def test_read_records_keeps_first_duplicate(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "dupes.xlsx", [["A1", 1], ["A1", 2], ["B2", 3]])
    records = read_records(path)
    assert [(r.case_id, r.saved_cost) for r in records] == [("A1", Decimal("1")), ("B2", Decimal("3"))]


def test_read_records_without_data_rows_is_validation_error(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "empty.xlsx", [[None, 5, "x"]])
    with pytest.raises(ValidationError) as excinfo:
        read_records(path)
    assert excinfo.value.code == "VALIDATION_ERROR"


@pytest.mark.parametrize("name", ["data.csv", "data", "data.txt"])
def test_validate_workbook_path_rejects_extensions(tmp_path: Path, name: str) -> None:
    target = tmp_path / name
    target.write_text("x", encoding="utf-8")
    with pytest.raises(ValidationError):
        validate_workbook_path(target)


def test_validate_workbook_path_requires_existing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        validate_workbook_path(tmp_path / "missing.xlsx")
    with pytest.raises(ValidationError):
        validate_workbook_path("")


def test_unreadable_workbook_is_validation_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(ValidationError):
        read_records(path)


def test_write_back_updates_matching_rows_only(tmp_path: Path) -> None:
    path = _make_workbook(
        tmp_path / "book.xlsx",
        [
            ["1001", 500, "Ana", None, None, None, None, None, "keep-1"],
            ["9999", 10, "otro", "x", "y", "z", "w", "v", "keep-2"],
        ],
    )
    record = _processed(CaseRecord(case_id="1001", saved_cost=Decimal("500")))

    updated = write_back_records(path, [record], WritebackColumns())

    assert updated == 1
    sheet = load_workbook(path).active
    assert sheet["A2"].value == "1001"
    assert sheet["B2"].value == 500
    assert sheet["C2"].value == pytest.approx(1234.5)
    assert sheet["C2"].number_format == "#,##0.00"
    assert sheet["D2"].value == ValidationLabel.PENDING
    assert sheet["E2"].value == "Sin notas"
    assert sheet["F2"].value == "01/02/2024"
    assert sheet["G2"].value == "Grúa"
    assert sheet["H2"].value == "Arrastre"
    assert sheet["I2"].value == "keep-1"
    assert [cell.value for cell in sheet[3]] == ["9999", 10, "otro", "x", "y", "z", "w", "v", "keep-2"]
    assert [cell.value for cell in sheet[1]] == HEADER


def test_write_back_is_idempotent(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "book.xlsx", [["1001", 500], ["1002", 20]])
    records = [_processed(record) for record in read_records(path)]

    write_back_records(path, records, WritebackColumns())
    first = [[cell.value for cell in row] for row in load_workbook(path).active.iter_rows()]
    write_back_records(path, records, WritebackColumns())
    second = [[cell.value for cell in row] for row in load_workbook(path).active.iter_rows()]

    assert first == second


def test_write_back_failed_record(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "book.xlsx", [["1001", 500]])
    record = CaseRecord(case_id="1001")
    record.mark_failed("Timeout 30000ms exceeded")

    write_back_records(path, [record], WritebackColumns())

    sheet = load_workbook(path).active
    assert sheet["C2"].value == 0
    assert sheet["D2"].value == ValidationLabel.NOT_FOUND
    assert sheet["E2"].value == "ERROR: Timeout 30000ms exceeded"
    assert sheet["F2"].value == "N/A"


def test_write_back_audit_columns(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "WRITEBACK_AUDIT_COLUMNS", True)
    path = _make_workbook(tmp_path / "book.xlsx", [["1001", 500]], header=True)
    record = _processed(CaseRecord(case_id="1001"), rule_applied=1, validation_label=ValidationLabel.ACCEPTED)

    write_back_records(path, [record])

    sheet = load_workbook(path).active
    assert sheet["D2"].value == ValidationLabel.ACCEPTED
    assert sheet["I2"].value == 1
    assert isinstance(sheet["J2"].value, datetime)


def test_write_back_with_no_records_leaves_file_untouched(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "book.xlsx", [["1001", 500]])
    before = path.read_bytes()
    assert write_back_records(path, []) == 0
    assert path.read_bytes() == before


def test_restore_written_results_rebuilds_earlier_outcomes(tmp_path: Path) -> None:
    path = _make_workbook(
        tmp_path / "input.xlsx", [["1001", 500, "Ana"], ["1002", 300, "Luis"], ["1003", 0, "Sofía"]]
    )
    accepted = _processed(
        CaseRecord(case_id="1001", saved_cost=Decimal("500")),
        system_cost=Decimal("500"),
        validation_label=ValidationLabel.ACCEPTED,
    )
    failed = CaseRecord(case_id="1002")
    failed.mark_failed("timeout")
    write_back_records(path, [accepted, failed])

    records = read_records(path)
    restored = restore_written_results(path, records)

    assert restored == 2
    assert records[0].is_accepted()
    assert records[0].system_cost == Decimal("500")
    assert records[0].service == "Grúa"
    assert records[1].status == "failed"
    assert records[1].error == "timeout"
    assert records[2].status == "pending"


def test_validate_workbook_and_file_info(tmp_path: Path) -> None:
    path = _make_workbook(tmp_path / "book.xlsx", [["1001", 500], [None, 1], ["1002", 20]])

    assert validate_workbook(path) == {"valid": True, "row_count": 2, "has_headers": True}
    info = get_file_info(path)
    assert info["file_name"] == "book.xlsx"
    assert info["record_count"] == 2
    assert info["sheet_count"] == 1
    assert info["sheet_name"] == "Expedientes"
