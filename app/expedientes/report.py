"""Run report: per-record results plus aggregate statistics."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import ValidationError
from .models import CaseRecord, RecordStatus

REPORT_TYPES = ("summary", "detailed")
REPORT_VERSION = "1.0"


@dataclass(frozen=True)
class ReportStatistics:
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    with_cost: int = 0
    active: int = 0
    total_cost: float = 0.0
    average_processing_time_seconds: int = 0
    success_rate_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "with_cost": self.with_cost,
            "active": self.active,
            "total_cost": self.total_cost,
            "average_processing_time_seconds": self.average_processing_time_seconds,
            "success_rate_percent": self.success_rate_percent,
        }


def compute_statistics(records: Iterable[CaseRecord]) -> ReportStatistics:
    """Aggregate ``records``.

    ``completed`` counts accepted cases, ``failed`` counts cases whose
    search failed and ``pending`` is everything else (``PENDING`` and
    ``NOT_FOUND``).
    """

    records = list(records)
    total = len(records)
    completed = sum(1 for record in records if record.is_accepted())
    failed = sum(1 for record in records if record.status == RecordStatus.FAILED)
    total_cost = sum(
        (record.system_cost for record in records if record.system_cost is not None),
        Decimal("0"),
    )

    timed = [
        (record.processed_at - record.created_at).total_seconds()
        for record in records
        if record.processed_at is not None
    ]
    average = round(sum(timed) / len(timed)) if timed else 0

    return ReportStatistics(
        total=total,
        completed=completed,
        failed=failed,
        pending=total - completed - failed,
        with_cost=sum(1 for record in records if record.has_cost()),
        active=sum(1 for record in records if record.is_active()),
        total_cost=float(total_cost),
        average_processing_time_seconds=int(average),
        success_rate_percent=round(completed / total * 100, 2) if total else 0.0,
    )


@dataclass(frozen=True)
class RunReport:
    """Immutable report; ``tag`` is the only way to add metadata afterwards."""

    records: Tuple[Dict[str, Any], ...]
    statistics: ReportStatistics
    metadata: Mapping[str, Any] = field(default_factory=dict)
    report_type: str = "summary"
    report_id: str = field(default_factory=lambda: f"report_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.report_type not in REPORT_TYPES:
            raise ValidationError("Invalid report type", field="report_type", value=self.report_type)
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def title(self) -> str:
        return f"Reporte {self.report_type} - {self.created_at:%Y-%m-%d}"

    def tag(self, key: str, value: Any) -> None:
        merged = dict(self.metadata)
        merged[key] = value
        object.__setattr__(self, "metadata", MappingProxyType(merged))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "type": self.report_type,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "statistics": self.statistics.to_dict(),
            "metadata": dict(self.metadata),
            "records": [dict(record) for record in self.records],
        }


def build_report(
    records: Iterable[CaseRecord],
    metadata: Optional[Mapping[str, Any]] = None,
    *,
    report_type: str = "summary",
) -> RunReport:
    records = list(records)
    merged: Dict[str, Any] = {
        **(metadata or {}),
        "generated_by": "system",
        "report_version": REPORT_VERSION,
        "total_processed": len(records),
        "generation_time": datetime.now().isoformat(),
    }
    if report_type == "detailed":
        merged["includes_details"] = True
    return RunReport(
        records=tuple(record.to_dict() for record in records),
        statistics=compute_statistics(records),
        metadata=merged,
        report_type=report_type,
    )


__all__ = ["ReportStatistics", "RunReport", "build_report", "compute_statistics"]
