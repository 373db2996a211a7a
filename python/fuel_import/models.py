"""
Fuel Import Data Model

Statement rows, vehicle directory entries, match results, processed
transactions and commit results shared by every pipeline stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .errors import CommitPartialFailure


class MatchType(Enum):
    """How a statement row was tied to a vehicle."""
    DIRECT_ID = "Direct ID Match"
    ODOMETER = "Odometer Match"
    UNMATCHED = "Unmatched"


class TransactionStatus(Enum):
    """Reconciliation status of a processed row."""
    NEW = "new"
    DUPLICATE = "duplicate"
    FLAGGED = "flagged"


class TransactionType(Enum):
    """What the fuel was bought for."""
    FLEET_VEHICLE = "Fleet Vehicle"
    AUXILIARY_FUEL = "Auxiliary Fuel"
    RENTAL_EQUIPMENT = "Rental Equipment"


# Status strings written to fuel_transactions.status
PERSISTED_STATUS = {
    TransactionStatus.NEW: "Verified",
    TransactionStatus.FLAGGED: "Flagged for Review",
}

DUPLICATE_REASON = "Already exists"


@dataclass(frozen=True)
class RawStatementRow:
    """One parsed line of a fuel card statement."""

    source_transaction_id: str
    transaction_date: datetime
    vehicle_identifier: str = ""
    employee_name: str = ""
    gallons: Decimal = Decimal("0")
    cost_per_gallon: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    odometer: int | None = None
    merchant_name: str = ""
    line_number: int = 0

    @property
    def has_odometer(self) -> bool:
        return self.odometer is not None and self.odometer > 0


@dataclass(frozen=True)
class RowError:
    """A statement line that was rejected during parsing."""

    line_number: int
    message: str

    def to_dict(self) -> dict:
        return {"line_number": self.line_number, "message": self.message}

    def __str__(self) -> str:
        return f"Line {self.line_number}: {self.message}"


@dataclass(frozen=True)
class VehicleDirectoryEntry:
    """Fleet vehicle reference data, read-only for the pipeline."""

    id: str
    asset_id: str
    make: str = ""
    model: str = ""
    year: int | None = None
    current_odometer: int | None = None
    active: bool = True

    @property
    def display_name(self) -> str:
        parts = [str(self.year) if self.year else "", self.make, self.model]
        name = " ".join(p for p in parts if p)
        return name or self.asset_id

    @classmethod
    def from_record(cls, record: dict) -> "VehicleDirectoryEntry":
        odometer = record.get("current_odometer")
        year = record.get("year")
        status = record.get("status")
        return cls(
            id=str(record["id"]),
            asset_id=(record.get("asset_id") or "").strip(),
            make=record.get("make") or "",
            model=record.get("model") or "",
            year=int(year) if year is not None else None,
            current_odometer=int(odometer) if odometer is not None else None,
            active=status is None or str(status).lower() == "active",
        )


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one row against the vehicle directory."""

    match_type: MatchType
    confidence: float = 0.0
    vehicle_id: str | None = None
    asset_id: str | None = None
    vehicle_name: str | None = None
    candidate_count: int = 0
    odometer_distance: int | None = None
    reason: str | None = None

    @property
    def is_matched(self) -> bool:
        return self.match_type != MatchType.UNMATCHED

    @classmethod
    def unmatched(cls, reason: str, candidate_count: int = 0) -> "MatchResult":
        return cls(
            match_type=MatchType.UNMATCHED,
            confidence=0.0,
            candidate_count=candidate_count,
            reason=reason,
        )

    def to_dict(self) -> dict:
        return {
            "match_type": self.match_type.value,
            "confidence": self.confidence,
            "matched_vehicle_id": self.vehicle_id,
            "matched_asset_id": self.asset_id,
            "matched_vehicle_name": self.vehicle_name,
            "candidate_count": self.candidate_count,
            "odometer_distance": self.odometer_distance,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ProcessedTransaction:
    """A statement row after matching, duplicate detection and classification."""

    row: RawStatementRow
    status: TransactionStatus
    transaction_type: TransactionType
    match: MatchResult
    flag_reason: str | None = None

    def __post_init__(self):
        if self.status in (TransactionStatus.FLAGGED, TransactionStatus.DUPLICATE):
            if not self.flag_reason:
                raise ValueError(f"{self.status.value} transaction requires a reason")
        elif self.flag_reason is not None:
            raise ValueError("Only flagged or duplicate transactions carry a reason")

    @property
    def source_transaction_id(self) -> str:
        return self.row.source_transaction_id

    def to_dict(self) -> dict:
        row = self.row
        return {
            "source_transaction_id": row.source_transaction_id,
            "transaction_date": row.transaction_date.isoformat(),
            "vehicle_identifier": row.vehicle_identifier,
            "employee_name": row.employee_name,
            "gallons": float(row.gallons),
            "cost_per_gallon": float(row.cost_per_gallon),
            "total_cost": float(row.total_cost),
            "odometer": row.odometer,
            "merchant_name": row.merchant_name,
            "line_number": row.line_number,
            "status": self.status.value,
            "flag_reason": self.flag_reason,
            "transaction_type": self.transaction_type.value,
            **self.match.to_dict(),
        }


@dataclass
class ReconciliationSummary:
    """Counts of processed rows by status."""

    total: int = 0
    new: int = 0
    duplicate: int = 0
    flagged: int = 0

    @classmethod
    def from_transactions(cls, transactions: list[ProcessedTransaction]) -> "ReconciliationSummary":
        summary = cls(total=len(transactions))
        for txn in transactions:
            if txn.status == TransactionStatus.NEW:
                summary.new += 1
            elif txn.status == TransactionStatus.DUPLICATE:
                summary.duplicate += 1
            else:
                summary.flagged += 1
        return summary

    @property
    def importable(self) -> int:
        return self.new + self.flagged

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "new": self.new,
            "duplicate": self.duplicate,
            "flagged": self.flagged,
        }


@dataclass(frozen=True)
class FinalRow:
    """A user-approved row with overrides merged, ready to commit."""

    source_transaction_id: str
    transaction_date: datetime
    vehicle_identifier: str
    employee_name: str
    gallons: Decimal
    cost_per_gallon: Decimal
    total_cost: Decimal
    odometer: int | None
    merchant_name: str
    status: TransactionStatus
    transaction_type: TransactionType
    vehicle_id: str | None = None
    flag_reason: str | None = None
    match_type: MatchType = MatchType.UNMATCHED
    overridden: bool = False

    @property
    def is_fleet_vehicle(self) -> bool:
        return self.transaction_type == TransactionType.FLEET_VEHICLE

    def to_record(self) -> dict:
        """Column values for the fuel_transactions table."""
        return {
            "source_transaction_id": self.source_transaction_id,
            "transaction_date": self.transaction_date,
            "vehicle_identifier": self.vehicle_identifier,
            "vehicle_id": self.vehicle_id if self.is_fleet_vehicle else None,
            "employee_name": self.employee_name,
            "gallons": self.gallons,
            "cost_per_gallon": self.cost_per_gallon,
            "total_cost": self.total_cost,
            "odometer": self.odometer,
            "merchant_name": self.merchant_name,
            "status": PERSISTED_STATUS[self.status],
            "flag_reason": self.flag_reason,
            "transaction_type": self.transaction_type.value,
            "match_type": self.match_type.value,
        }


@dataclass(frozen=True)
class OdometerUpdate:
    """A ratcheted odometer write applied during commit."""

    vehicle_id: str
    previous_odometer: int | None
    new_odometer: int

    @property
    def change(self) -> int:
        return self.new_odometer - (self.previous_odometer or 0)

    def to_dict(self) -> dict:
        return {
            "vehicle_id": self.vehicle_id,
            "previous_odometer": self.previous_odometer,
            "new_odometer": self.new_odometer,
            "change": self.change,
        }


@dataclass
class CommitResult:
    """Per-row outcome of an import commit."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    odometer_updates: list[OdometerUpdate] = field(default_factory=list)
    expenses_created: int = 0
    already_imported: list[str] = field(default_factory=list)
    statement_marked_imported: bool = False

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def is_complete(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        """Raise CommitPartialFailure if any row failed."""
        if self.failed:
            raise CommitPartialFailure(self)

    def to_dict(self) -> dict:
        return {
            "success": self.is_complete,
            "transactions_imported": len(self.succeeded),
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "odometer_updates": [u.to_dict() for u in self.odometer_updates],
            "expense_transactions_created": self.expenses_created,
            "already_imported": list(self.already_imported),
            "statement_marked_imported": self.statement_marked_imported,
        }
