"""Excel and CSV export helpers for run reports."""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional, Union

import pandas as pd

from . import config
from .models import RecordStatus, ValidationLabel
from .report import RunReport
from .telemetry import EXPORTS_DIR, _ts, prune_old_exports
from .utils import load_json_file

ReportLike = Union[RunReport, Mapping[str, Any]]


def _as_payload(report: ReportLike) -> Mapping[str, Any]:
    return report.to_dict() if isinstance(report, RunReport) else report


def _records_frame(payload: Mapping[str, Any]) -> pd.DataFrame:
    df = pd.DataFrame(payload.get("records", []))
    if df.empty:
        return pd.DataFrame([{"info": "No records in report"}])
    return df


def load_latest_report() -> Optional[Mapping[str, Any]]:
    """Return the report stored with the last run summary, if any."""

    summary = load_json_file(config.SUMMARY_FILE)
    if not summary or not summary.get("report"):
        return None
    return summary["report"]


def export_report_to_excel(report: ReportLike, dest_path: Optional[str] = None) -> str:
    """Write the report as a workbook with one sheet per outcome plus a summary."""

    payload = _as_payload(report)
    df = _records_frame(payload)

    if "validation_label" in df.columns:
        accepted = df[df["validation_label"] == ValidationLabel.ACCEPTED].copy()
        pending = df[
            (df["validation_label"] != ValidationLabel.ACCEPTED)
            & (df["status"] != RecordStatus.FAILED)
        ].copy()
        failed = df[df["status"] == RecordStatus.FAILED].copy()
        by_label = df.groupby("validation_label").size().reset_index(name="count")
    else:
        accepted = pending = failed = by_label = pd.DataFrame()

    stats = payload.get("statistics") or {}
    summary = pd.DataFrame(
        [{"metric": key, "value": value} for key, value in stats.items()]
    )

    os.makedirs(EXPORTS_DIR, exist_ok=True)
    if not dest_path:
        basename = f"{_ts()}_{payload.get('report_id', 'report')}.xlsx"
        dest_path = os.path.join(EXPORTS_DIR, basename)

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="All")
        accepted.to_excel(writer, index=False, sheet_name="Accepted")
        pending.to_excel(writer, index=False, sheet_name="Pending")
        failed.to_excel(writer, index=False, sheet_name="Failed")
        summary.to_excel(writer, index=False, sheet_name="Summary")
        if not by_label.empty:
            by_label.to_excel(writer, index=False, sheet_name="Summary_Label")

    prune_old_exports(".xlsx", keep=dest_path)
    return dest_path


def report_to_csv(report: ReportLike, dest_path: Optional[str] = None) -> str:
    """Write the report's records as UTF-8 CSV and return the path."""

    payload = _as_payload(report)
    df = _records_frame(payload)
    os.makedirs(EXPORTS_DIR, exist_ok=True)
    if not dest_path:
        basename = f"{_ts()}_{payload.get('report_id', 'report')}.csv"
        dest_path = os.path.join(EXPORTS_DIR, basename)
    df.to_csv(dest_path, index=False, encoding="utf-8")
    prune_old_exports(".csv", keep=dest_path)
    return dest_path


__all__ = ["export_report_to_excel", "load_latest_report", "report_to_csv"]
