"""Run telemetry helpers."""

from __future__ import annotations

import json
import os
import time
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional

from . import config
from .models import CaseRecord

RUNS_DIR = os.environ.get("RUNS_DIR", str(config.RUNS_DIR))
EXPORTS_DIR = os.environ.get("EXPORTS_DIR", str(config.EXPORTS_DIR))
MAX_EXPORTS = config.EXPORTS_KEEP_MAX


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class RunTelemetry:
    """Per-record outcomes of one run, persisted as ``run_<id>.json``.

    ``summary`` counts records by status (``count_completed``,
    ``count_failed``) and ``labels`` counts them by validation label.
    """

    def __init__(self, mode: str) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self.mode = mode
        self.started_at = time.time()
        self.entries: List[Dict[str, Any]] = []
        self.summary: Dict[str, int] = defaultdict(int)
        self.labels: Dict[str, int] = defaultdict(int)
        os.makedirs(RUNS_DIR, exist_ok=True)
        os.makedirs(EXPORTS_DIR, exist_ok=True)

    def add(self, record: CaseRecord, *, phase: Optional[str] = None) -> None:
        self.entries.append(
            {
                "case_id": record.case_id,
                "status": record.status,
                "reason": record.error or record.validation_label,
                "validation_label": record.validation_label,
                "rule_applied": record.rule_applied,
                "processing_time_ms": record.processing_time_ms,
                "phase": phase,
            }
        )
        self.summary[f"count_{record.status}"] += 1
        if record.validation_label:
            self.labels[record.validation_label] += 1

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> str:
        ended_at = time.time()
        payload = {
            "run_id": self.run_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "ended_at": ended_at,
            "duration_seconds": round(ended_at - self.started_at, 3),
            "summary": dict(self.summary),
            "labels": dict(self.labels),
            "entries": self.entries,
            **(extra or {}),
        }
        path = os.path.join(RUNS_DIR, f"run_{self.run_id}.json")
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
        return path


def latest_run_path() -> Optional[str]:
    """Return the newest ``run_*.json`` under ``RUNS_DIR``, if any."""

    if not os.path.isdir(RUNS_DIR):
        return None
    runs = sorted(
        os.path.join(RUNS_DIR, name)
        for name in os.listdir(RUNS_DIR)
        if name.startswith("run_") and name.endswith(".json")
    )
    return runs[-1] if runs else None


def _export_age_key(path: str) -> tuple:
    try:
        return (os.path.getmtime(path), path)
    except OSError:
        return (0.0, path)


def prune_old_exports(suffix: str = ".xlsx", keep: Optional[str] = None) -> None:
    """Remove the oldest exports by modification time beyond ``MAX_EXPORTS``.

    ``keep`` names a file that is never removed, normally the one just written.
    """

    if not os.path.isdir(EXPORTS_DIR):
        return
    keep_path = os.path.abspath(keep) if keep else None
    files = sorted(
        [os.path.join(EXPORTS_DIR, p) for p in os.listdir(EXPORTS_DIR) if p.endswith(suffix)],
        key=_export_age_key,
    )
    candidates = [p for p in files if os.path.abspath(p) != keep_path]
    limit = MAX_EXPORTS - (len(files) - len(candidates))
    files = candidates
    while len(files) > max(limit, 0):
        old = files.pop(0)
        try:
            os.remove(old)
        except Exception:  # noqa: BLE001
            continue


__all__ = [
    "RunTelemetry",
    "latest_run_path",
    "prune_old_exports",
]
