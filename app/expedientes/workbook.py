"""Read case records from, and write results back to, the input workbook.

Layout of the first worksheet (row 1 is a header and is never touched):

    A  case id            B  saved cost        C  name on input / system cost on output
    D  validation label   E  notes             F  registration date
    G  service            H  subservice        I  rule (optional)   J  validated at (optional)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import config
from .errors import ValidationError
from .logging_utils import _run_event
from .models import CaseRecord, SearchOutcome
from .utils import log_line

PathLike = Union[str, Path]

ALLOWED_EXTENSIONS = (".xlsx", ".xls")
COST_NUMBER_FORMAT = "#,##0.00"

ID_COLUMN = 1
SAVED_COST_COLUMN = 2
NAME_COLUMN = 3
FAILED_NOTES_PREFIX = "ERROR: "


@dataclass(frozen=True)
class WritebackColumns:
    """1-based column numbers for result fields; ``None`` disables a column."""

    cost: int = 3
    validation_label: int = 4
    notes: int = 5
    registration_date: int = 6
    service: int = 7
    subservice: int = 8
    rule: Optional[int] = None
    validated_at: Optional[int] = None

    @classmethod
    def with_audit(cls) -> "WritebackColumns":
        return cls(rule=9, validated_at=10)

    def last_column(self) -> int:
        used = [self.cost, self.validation_label, self.notes, self.registration_date,
                self.service, self.subservice, self.rule, self.validated_at]
        return max(column for column in used if column is not None)


DEFAULT_COLUMNS = WritebackColumns()


def default_columns() -> WritebackColumns:
    return WritebackColumns.with_audit() if config.WRITEBACK_AUDIT_COLUMNS else DEFAULT_COLUMNS


def validate_workbook_path(path: Optional[PathLike]) -> Path:
    """Return ``path`` as a ``Path`` or raise ``ValidationError``."""

    if not path or not str(path).strip():
        raise ValidationError("File path is required", field="file_path", value=path)
    candidate = Path(path)
    if candidate.suffix.lower() not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            "File must be an Excel file (.xlsx or .xls)", field="file_path", value=path
        )
    if not candidate.is_file():
        raise ValidationError("File does not exist", field="file_path", value=path)
    return candidate


def _open(path: Path, *, read_only: bool = False) -> Workbook:
    try:
        return load_workbook(path, read_only=read_only)
    except Exception as exc:  # noqa: BLE001
        raise ValidationError(
            f"Could not open workbook: {exc}", field="file_path", value=path, cause=exc
        ) from exc


def _first_sheet(workbook: Workbook) -> Worksheet:
    if not workbook.worksheets:
        raise ValidationError("No worksheet found in Excel file")
    return workbook.worksheets[0]


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        text = str(value).strip().replace("$", "").replace(",", "")
        result = Decimal(text) if text else Decimal("0")
    except InvalidOperation:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


def _data_rows(sheet: Worksheet) -> Iterator[Tuple[int, Tuple[Any, ...]]]:
    for row_number, values in enumerate(
        sheet.iter_rows(min_row=2, max_col=NAME_COLUMN, values_only=True), start=2
    ):
        yield row_number, values


def read_records(path: PathLike) -> List[CaseRecord]:
    """Return one ``CaseRecord`` per data row with a non-blank id.

    The saved cost falls back to 0 when blank or non-numeric. Repeated ids
    keep their first occurrence. Raises ``ValidationError`` for unreadable
    files and for sheets without usable rows.
    """

    workbook_path = validate_workbook_path(path)
    workbook = _open(workbook_path, read_only=True)
    try:
        sheet = _first_sheet(workbook)
        records: List[CaseRecord] = []
        seen: set[str] = set()
        for row_number, values in _data_rows(sheet):
            padded = tuple(values) + (None,) * (NAME_COLUMN - len(values))
            case_id = _cell_text(padded[ID_COLUMN - 1])
            if not case_id:
                continue
            if case_id in seen:
                log_line(f"[WORKBOOK] Duplicate case id {case_id} at row {row_number}; skipping.")
                continue
            seen.add(case_id)
            records.append(
                CaseRecord(
                    case_id=case_id,
                    saved_cost=_to_decimal(padded[SAVED_COST_COLUMN - 1]),
                    name=_cell_text(padded[NAME_COLUMN - 1]),
                    row_number=row_number,
                )
            )
    finally:
        workbook.close()

    if not records:
        raise ValidationError(
            "Excel file contains no valid expediente data", field="file_path", value=path
        )
    _run_event("workbook", step="read", path=str(workbook_path), records=len(records))
    return records


def _result_values(record: CaseRecord, columns: WritebackColumns) -> Dict[int, Any]:
    values: Dict[int, Any] = {
        columns.cost: float(record.system_cost or 0),
        columns.validation_label: record.validation_label or "",
        columns.notes: record.notes or "",
        columns.registration_date: record.registration_date or "",
        columns.service: record.service or "",
        columns.subservice: record.subservice or "",
    }
    if columns.rule is not None:
        values[columns.rule] = record.rule_applied
    if columns.validated_at is not None:
        values[columns.validated_at] = (
            record.validated_at.replace(microsecond=0) if record.validated_at else None
        )
    return values


def write_back_records(
    path: PathLike,
    records: Iterable[CaseRecord],
    columns: Optional[WritebackColumns] = None,
) -> int:
    """Write result fields of ``records`` onto their matching rows.

    Rows are matched by case id in column A; other rows and columns are left
    as they were. Writing the same records twice yields the same cells.
    Returns the number of rows updated.
    """

    columns = columns or default_columns()
    workbook_path = validate_workbook_path(path)
    by_id = {record.case_id: record for record in records}
    if not by_id:
        return 0

    workbook = _open(workbook_path)
    sheet = _first_sheet(workbook)
    updated = 0
    for row in sheet.iter_rows(min_row=2):
        case_id = _cell_text(row[ID_COLUMN - 1].value) if row else ""
        record = by_id.get(case_id)
        if record is None:
            continue
        row_number = row[0].row
        for column, value in _result_values(record, columns).items():
            cell = sheet.cell(row=row_number, column=column)
            cell.value = value
            if column == columns.cost:
                cell.number_format = COST_NUMBER_FORMAT
        updated += 1

    workbook.save(workbook_path)
    workbook.close()
    _run_event("workbook", step="write_back", path=str(workbook_path), updated=updated)
    return updated


def restore_written_results(
    path: PathLike,
    records: Iterable[CaseRecord],
    columns: Optional[WritebackColumns] = None,
) -> int:
    """Rebuild result fields of ``records`` from rows an earlier run wrote.

    A row counts as written when its validation label cell is filled. Notes
    starting with ``ERROR: `` mark a failed search. Returns the number of
    records restored; the rest keep their pending status.
    """

    columns = columns or default_columns()
    workbook_path = validate_workbook_path(path)
    by_id = {record.case_id: record for record in records}
    if not by_id:
        return 0

    width = columns.last_column()
    workbook = _open(workbook_path, read_only=True)
    restored = 0
    try:
        sheet = _first_sheet(workbook)
        for values in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
            padded = tuple(values) + (None,) * (width - len(values))
            record = by_id.pop(_cell_text(padded[ID_COLUMN - 1]), None)
            if record is None:
                continue
            label = _cell_text(padded[columns.validation_label - 1])
            if not label:
                continue
            notes = _cell_text(padded[columns.notes - 1])
            if notes.startswith(FAILED_NOTES_PREFIX):
                record.mark_failed(notes[len(FAILED_NOTES_PREFIX):])
            else:
                rule = padded[columns.rule - 1] if columns.rule else None
                record.mark_processed(
                    SearchOutcome.found(
                        record.case_id,
                        system_cost=_to_decimal(padded[columns.cost - 1]),
                        notes=notes,
                        registration_date=_cell_text(padded[columns.registration_date - 1]),
                        service=_cell_text(padded[columns.service - 1]),
                        subservice=_cell_text(padded[columns.subservice - 1]),
                        validation_label=label,
                        rule_applied=int(rule) if isinstance(rule, (int, float)) else None,
                    )
                )
            if columns.validated_at and isinstance(padded[columns.validated_at - 1], datetime):
                record.validated_at = padded[columns.validated_at - 1]
            restored += 1
    finally:
        workbook.close()

    _run_event("workbook", step="restore", path=str(workbook_path), restored=restored)
    return restored


def validate_workbook(path: PathLike) -> Dict[str, Any]:
    """Return ``{valid, row_count, has_headers}`` or raise ``ValidationError``."""

    records = read_records(path)
    return {"valid": True, "row_count": len(records), "has_headers": True}


def get_file_info(path: PathLike) -> Dict[str, Any]:
    workbook_path = validate_workbook_path(path)
    workbook = _open(workbook_path, read_only=True)
    try:
        sheet = _first_sheet(workbook)
        count = sum(1 for _, values in _data_rows(sheet) if values and _cell_text(values[0]))
        return {
            "file_path": str(workbook_path),
            "file_name": os.path.basename(workbook_path),
            "record_count": count,
            "sheet_count": len(workbook.worksheets),
            "sheet_name": sheet.title,
        }
    finally:
        workbook.close()


__all__ = [
    "DEFAULT_COLUMNS",
    "WritebackColumns",
    "default_columns",
    "get_file_info",
    "read_records",
    "restore_written_results",
    "validate_workbook",
    "validate_workbook_path",
    "write_back_records",
]
