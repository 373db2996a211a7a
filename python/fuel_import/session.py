"""
Reconciliation Session Module

Holds one uploaded statement's processed transactions and the user's
overrides until the batch is committed or abandoned.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from .errors import SessionClosedError, UnknownTransactionError, ValidationError
from .models import (
    FinalRow,
    ProcessedTransaction,
    ReconciliationSummary,
    RowError,
    TransactionStatus,
    TransactionType,
    VehicleDirectoryEntry,
)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a reconciliation session."""
    OPEN = "open"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass
class ResolutionIssue:
    """A row that cannot be committed as it stands."""

    source_transaction_id: str
    message: str

    def to_dict(self) -> dict:
        return {"source_transaction_id": self.source_transaction_id, "message": self.message}


@dataclass
class ReconciliationSession:
    """Reconciliation state for a single statement upload."""

    transactions: list[ProcessedTransaction]
    directory: list[VehicleDirectoryEntry] = field(default_factory=list)
    parse_errors: list[RowError] = field(default_factory=list)
    source_name: str | None = None
    statement_end_date: date | None = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self._by_id: dict[str, ProcessedTransaction] = {}
        for txn in self.transactions:
            if txn.source_transaction_id in self._by_id:
                # A repeated id within one statement is only allowed as a duplicate row
                if txn.status == TransactionStatus.DUPLICATE:
                    continue
                raise ValueError(f"Duplicate source transaction id in session: {txn.source_transaction_id}")
            self._by_id[txn.source_transaction_id] = txn

        self._vehicles = {v.id: v for v in self.directory}
        self._vehicle_overrides: dict[str, str] = {}
        self._type_overrides: dict[str, TransactionType] = {}
        self._imported: set[str] = set()
        self.state = SessionState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    def get(self, source_id: str) -> ProcessedTransaction:
        """Get the original processed transaction for a source id."""
        try:
            return self._by_id[source_id]
        except KeyError:
            raise UnknownTransactionError(source_id) from None

    def summary(self) -> ReconciliationSummary:
        """Counts by status of the original classification."""
        return ReconciliationSummary.from_transactions(self.transactions)

    # Overrides

    def apply_vehicle_override(self, source_id: str, vehicle_id: str) -> None:
        """Assign a vehicle to a row, replacing any earlier vehicle override.

        Args:
            source_id: Source transaction id
            vehicle_id: Directory id of the vehicle

        Raises:
            UnknownTransactionError: If the row is not in this session
            ValueError: If the vehicle is not in the directory snapshot
        """
        self._ensure_open()
        self.get(source_id)

        if self._vehicles and vehicle_id not in self._vehicles:
            raise ValueError(f"Unknown vehicle: {vehicle_id}")

        self._vehicle_overrides[source_id] = vehicle_id
        logger.info(f"Session {self.session_id}: vehicle override {source_id} -> {vehicle_id}")

    def apply_type_override(self, source_id: str, transaction_type: TransactionType | str) -> None:
        """Reassign a row's transaction type, replacing any earlier type override.

        Args:
            source_id: Source transaction id
            transaction_type: TransactionType or its value ("Fleet Vehicle", ...)

        Raises:
            UnknownTransactionError: If the row is not in this session
            ValueError: If the type is not recognized
        """
        self._ensure_open()
        self.get(source_id)

        if not isinstance(transaction_type, TransactionType):
            transaction_type = TransactionType(transaction_type)

        self._type_overrides[source_id] = transaction_type
        logger.info(f"Session {self.session_id}: type override {source_id} -> {transaction_type.value}")

    def clear_overrides(self, source_id: str) -> None:
        """Drop all overrides for a row, restoring its original classification."""
        self._ensure_open()
        self.get(source_id)
        self._vehicle_overrides.pop(source_id, None)
        self._type_overrides.pop(source_id, None)

    def vehicle_override(self, source_id: str) -> str | None:
        return self._vehicle_overrides.get(source_id)

    def type_override(self, source_id: str) -> TransactionType | None:
        return self._type_overrides.get(source_id)

    # Resolution

    def resolved_type(self, txn: ProcessedTransaction) -> TransactionType:
        return self._type_overrides.get(txn.source_transaction_id, txn.transaction_type)

    def resolved_vehicle_id(self, txn: ProcessedTransaction) -> str | None:
        """Vehicle a row will be committed with; None for non-fleet rows."""
        if self.resolved_type(txn) != TransactionType.FLEET_VEHICLE:
            return None
        override = self._vehicle_overrides.get(txn.source_transaction_id)
        return override if override is not None else txn.match.vehicle_id

    def importable(self) -> list[ProcessedTransaction]:
        """Rows still to import.

        Duplicates are always excluded, as are rows already written by an
        earlier commit attempt that was interrupted.
        """
        return [
            t for t in self.transactions
            if t.status != TransactionStatus.DUPLICATE
            and t.source_transaction_id not in self._imported
        ]

    def already_imported(self) -> list[str]:
        """Rows written by interrupted commit attempts, in statement order."""
        return [
            t.source_transaction_id for t in self.transactions
            if t.status != TransactionStatus.DUPLICATE
            and t.source_transaction_id in self._imported
        ]

    def validate(self) -> list[ResolutionIssue]:
        """List rows that cannot be committed with the current overrides."""
        issues = []
        for txn in self.importable():
            if (
                self.resolved_type(txn) == TransactionType.FLEET_VEHICLE
                and not self.resolved_vehicle_id(txn)
            ):
                issues.append(ResolutionIssue(
                    source_transaction_id=txn.source_transaction_id,
                    message="Fleet vehicle transaction has no vehicle selected",
                ))
        return issues

    def resolve(self) -> list[FinalRow]:
        """Merge overrides over the original classification for every importable row.

        Returns:
            Commit-ready rows in statement order

        Raises:
            ValidationError: If any fleet row still has no vehicle
            SessionClosedError: If the session was committed or cancelled
        """
        self._ensure_open()

        issues = self.validate()
        if issues:
            ids = [i.source_transaction_id for i in issues]
            raise ValidationError(
                f"{len(ids)} fleet vehicle transactions need a vehicle before import: {', '.join(ids)}",
                source_ids=ids,
            )

        final_rows = []
        for txn in self.importable():
            row = txn.row
            source_id = txn.source_transaction_id
            final_rows.append(FinalRow(
                source_transaction_id=source_id,
                transaction_date=row.transaction_date,
                vehicle_identifier=row.vehicle_identifier,
                employee_name=row.employee_name,
                gallons=row.gallons,
                cost_per_gallon=row.cost_per_gallon,
                total_cost=row.total_cost,
                odometer=row.odometer,
                merchant_name=row.merchant_name,
                status=txn.status,
                transaction_type=self.resolved_type(txn),
                vehicle_id=self.resolved_vehicle_id(txn),
                flag_reason=txn.flag_reason,
                match_type=txn.match.match_type,
                overridden=source_id in self._vehicle_overrides or source_id in self._type_overrides,
            ))

        return final_rows

    # Lifecycle

    def mark_partially_committed(self, source_ids: list[str]) -> None:
        """Record rows a failed commit attempt managed to write.

        The session stays open; later resolve() calls leave these rows out.
        """
        self._ensure_open()
        for source_id in source_ids:
            self.get(source_id)
        self._imported.update(source_ids)
        if source_ids:
            logger.info(
                f"Session {self.session_id}: {len(source_ids)} rows imported before the commit stopped"
            )

    def mark_committed(self) -> None:
        self._ensure_open()
        self.state = SessionState.COMMITTED
        self._discard_overrides()

    def cancel(self) -> None:
        """Abandon the session. Nothing has been written, so nothing is undone."""
        self._ensure_open()
        self.state = SessionState.CANCELLED
        self._discard_overrides()
        logger.info(f"Session {self.session_id} cancelled")

    def _discard_overrides(self) -> None:
        self._vehicle_overrides.clear()
        self._type_overrides.clear()

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise SessionClosedError(f"Session {self.session_id} is {self.state.value}")

    def to_dict(self) -> dict:
        """Render the session for the verification screen."""
        transactions = []
        for txn in self.transactions:
            data = txn.to_dict()
            vehicle_id = self.resolved_vehicle_id(txn)
            vehicle = self._vehicles.get(vehicle_id) if vehicle_id else None
            data.update({
                "resolved_transaction_type": self.resolved_type(txn).value,
                "resolved_vehicle_id": vehicle_id,
                "resolved_vehicle_name": vehicle.display_name if vehicle else None,
                "overridden": (
                    txn.source_transaction_id in self._vehicle_overrides
                    or txn.source_transaction_id in self._type_overrides
                ),
            })
            transactions.append(data)

        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "source_name": self.source_name,
            "statement_end_date": (
                self.statement_end_date.isoformat() if self.statement_end_date else None
            ),
            "transactions": transactions,
            "summary": self.summary().to_dict(),
            "parse_errors": [e.to_dict() for e in self.parse_errors],
            "unresolved": [i.to_dict() for i in self.validate()] if self.is_open else [],
            "already_imported": self.already_imported(),
        }
