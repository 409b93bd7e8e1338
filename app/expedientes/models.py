"""Domain records shared by the workbook adapter, session engine and runner."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

NOT_AVAILABLE = "N/A"
ACTIVE_PORTAL_STATUSES = frozenset({"Activo", "En trámite"})


class ValidationLabel:
    ACCEPTED = "ACCEPTED"
    PENDING = "PENDING"
    NOT_FOUND = "NOT_FOUND"


class RecordStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def is_complete(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class ReleaseLogicConfig:
    """Run-scoped policy switches. Exact match cannot be disabled."""

    margin_logic: bool = False
    superior_logic: bool = False

    @property
    def exact_match(self) -> bool:
        return True

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ReleaseLogicConfig":
        data = data or {}
        return cls(
            margin_logic=bool(data.get("margin_logic", data.get("marginLogic", False))),
            superior_logic=bool(data.get("superior_logic", data.get("superiorLogic", False))),
        )

    def to_dict(self) -> dict[str, bool]:
        return {
            "exact_match": self.exact_match,
            "margin_logic": self.margin_logic,
            "superior_logic": self.superior_logic,
        }


@dataclass(frozen=True)
class RunStats:
    """Counters for one engine session; every bump returns a new snapshot."""

    total_reviewed: int = 0
    total_with_cost: int = 0
    total_accepted: int = 0

    def bump(self, *, reviewed: int = 0, with_cost: int = 0, accepted: int = 0) -> "RunStats":
        return replace(
            self,
            total_reviewed=self.total_reviewed + reviewed,
            total_with_cost=self.total_with_cost + with_cost,
            total_accepted=self.total_accepted + accepted,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total_reviewed": self.total_reviewed,
            "total_with_cost": self.total_with_cost,
            "total_accepted": self.total_accepted,
        }


@dataclass
class SearchOutcome:
    """What the portal returned for one case id."""

    case_id: str
    success: bool
    system_cost: Optional[Decimal] = None
    status: str = NOT_AVAILABLE
    notes: str = ""
    registration_date: str = ""
    service: str = ""
    subservice: str = ""
    validation_label: str = ValidationLabel.NOT_FOUND
    rule_applied: Optional[int] = None
    validated_at: Optional[datetime] = None
    processing_time_ms: int = 0
    error: Optional[str] = None
    error_phase: Optional[str] = None

    @classmethod
    def found(
        cls,
        case_id: str,
        *,
        system_cost: Decimal,
        status: str = "",
        notes: str = "",
        registration_date: str = "",
        service: str = "",
        subservice: str = "",
        validation_label: str = ValidationLabel.PENDING,
        rule_applied: Optional[int] = None,
    ) -> "SearchOutcome":
        return cls(
            case_id=case_id,
            success=True,
            system_cost=system_cost,
            status=status,
            notes=notes,
            registration_date=registration_date,
            service=service,
            subservice=subservice,
            validation_label=validation_label,
            rule_applied=rule_applied,
            validated_at=datetime.now(),
        )

    @classmethod
    def empty(cls, case_id: str) -> "SearchOutcome":
        """No meaningful row for ``case_id``; a normal result, not an error."""

        return cls(
            case_id=case_id,
            success=True,
            system_cost=Decimal("0"),
            status=NOT_AVAILABLE,
            notes=NOT_AVAILABLE,
            registration_date=NOT_AVAILABLE,
            service=NOT_AVAILABLE,
            subservice=NOT_AVAILABLE,
            validation_label=ValidationLabel.NOT_FOUND,
            validated_at=datetime.now(),
        )

    @classmethod
    def failure(
        cls,
        case_id: str,
        error: str,
        *,
        phase: Optional[str] = None,
        processing_time_ms: int = 0,
    ) -> "SearchOutcome":
        return cls(
            case_id=case_id,
            success=False,
            system_cost=Decimal("0"),
            status=NOT_AVAILABLE,
            notes=NOT_AVAILABLE,
            registration_date=NOT_AVAILABLE,
            service=NOT_AVAILABLE,
            subservice=NOT_AVAILABLE,
            validation_label=ValidationLabel.NOT_FOUND,
            validated_at=datetime.now(),
            processing_time_ms=processing_time_ms,
            error=error,
            error_phase=phase,
        )

    def is_successful(self) -> bool:
        return self.success and not self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "success": self.success,
            "system_cost": None if self.system_cost is None else float(self.system_cost),
            "status": self.status,
            "notes": self.notes,
            "registration_date": self.registration_date,
            "service": self.service,
            "subservice": self.subservice,
            "validation_label": self.validation_label,
            "rule_applied": self.rule_applied,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


@dataclass
class CaseRecord:
    """One input row; result fields are filled in place as the run advances."""

    case_id: str
    saved_cost: Decimal = Decimal("0")
    name: str = ""
    row_number: Optional[int] = None
    status: str = RecordStatus.PENDING
    system_cost: Optional[Decimal] = None
    portal_status: str = ""
    notes: str = ""
    registration_date: str = ""
    service: str = ""
    subservice: str = ""
    validation_label: str = ""
    rule_applied: Optional[int] = None
    validated_at: Optional[datetime] = None
    processing_time_ms: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    processed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.case_id = str(self.case_id or "").strip()
        if not self.case_id:
            raise ValueError("case_id is required")

    def mark_processed(self, outcome: SearchOutcome) -> None:
        self.status = RecordStatus.COMPLETED
        self.system_cost = outcome.system_cost
        self.portal_status = outcome.status
        self.notes = outcome.notes
        self.registration_date = outcome.registration_date
        self.service = outcome.service
        self.subservice = outcome.subservice
        self.validation_label = outcome.validation_label
        self.rule_applied = outcome.rule_applied
        self.validated_at = outcome.validated_at
        self.processing_time_ms = outcome.processing_time_ms
        self.error = None
        self.processed_at = datetime.now()

    def mark_failed(self, error: str, *, processing_time_ms: int = 0) -> None:
        self.status = RecordStatus.FAILED
        self.error = error
        self.system_cost = Decimal("0")
        self.portal_status = NOT_AVAILABLE
        self.notes = f"ERROR: {error}"
        self.registration_date = NOT_AVAILABLE
        self.service = NOT_AVAILABLE
        self.subservice = NOT_AVAILABLE
        self.validation_label = ValidationLabel.NOT_FOUND
        self.rule_applied = None
        self.validated_at = datetime.now()
        self.processing_time_ms = processing_time_ms
        self.processed_at = datetime.now()

    def is_completed(self) -> bool:
        return self.status == RecordStatus.COMPLETED

    def is_accepted(self) -> bool:
        return self.is_completed() and self.validation_label == ValidationLabel.ACCEPTED

    def has_cost(self) -> bool:
        return self.system_cost is not None and self.system_cost > 0

    def is_active(self) -> bool:
        return self.portal_status in ACTIVE_PORTAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "name": self.name,
            "row_number": self.row_number,
            "status": self.status,
            "saved_cost": float(self.saved_cost),
            "system_cost": None if self.system_cost is None else float(self.system_cost),
            "portal_status": self.portal_status,
            "notes": self.notes,
            "registration_date": self.registration_date,
            "service": self.service,
            "subservice": self.subservice,
            "validation_label": self.validation_label,
            "rule_applied": self.rule_applied,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


__all__ = [
    "NOT_AVAILABLE",
    "ValidationLabel",
    "RecordStatus",
    "Credentials",
    "ReleaseLogicConfig",
    "RunStats",
    "SearchOutcome",
    "CaseRecord",
]
