"""
Duplicate Transaction Detector Module

Detects statement rows that were already imported, either by source
transaction id or by (date, vehicle identifier, total cost) for statements
that were re-exported with regenerated ids.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .models import RawStatementRow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

Fingerprint = tuple[date, str, Decimal]


def normalize_identifier(identifier: str | None) -> str:
    """Normalize a vehicle identifier for fingerprint comparison."""
    return " ".join((identifier or "").split()).upper()


def fingerprint(
    transaction_date: date | datetime,
    vehicle_identifier: str | None,
    total_cost: Decimal | float | str,
) -> Fingerprint:
    """Build the (date, identifier, total cost) duplicate key.

    Args:
        transaction_date: Date or datetime of the purchase
        vehicle_identifier: Raw identifier from the statement
        total_cost: Total fuel cost

    Returns:
        Hashable fingerprint tuple
    """
    if isinstance(transaction_date, datetime):
        transaction_date = transaction_date.date()

    cost = Decimal(str(total_cost)).quantize(CENT, rounding=ROUND_HALF_UP)
    return (transaction_date, normalize_identifier(vehicle_identifier), cost)


@dataclass
class PriorImportIndex:
    """Lookup of previously imported transactions."""

    source_ids: set[str] = field(default_factory=set)
    fingerprints: set[Fingerprint] = field(default_factory=set)

    @classmethod
    def from_records(cls, records: list[dict[str, Any]]) -> "PriorImportIndex":
        """Build an index from stored fuel transaction records.

        Args:
            records: Dicts with source_transaction_id, transaction_date,
                vehicle_identifier and total_cost

        Returns:
            PriorImportIndex
        """
        index = cls()
        for record in records:
            index.add(
                record.get("source_transaction_id"),
                record.get("transaction_date"),
                record.get("vehicle_identifier"),
                record.get("total_cost"),
            )
        return index

    def add(
        self,
        source_id: str | None,
        transaction_date: date | datetime | None,
        vehicle_identifier: str | None,
        total_cost: Any,
    ) -> None:
        if source_id:
            self.source_ids.add(str(source_id))
        if transaction_date is not None and total_cost is not None:
            self.fingerprints.add(fingerprint(transaction_date, vehicle_identifier, total_cost))

    def add_row(self, row: RawStatementRow) -> None:
        self.add(row.source_transaction_id, row.transaction_date, row.vehicle_identifier, row.total_cost)

    def __len__(self) -> int:
        return len(self.source_ids)


@dataclass
class DuplicateCheck:
    """Duplicate decision for one row."""

    row: RawStatementRow
    is_duplicate: bool
    reason: str | None = None


class DuplicateDetector:
    """Detects rows that duplicate already-imported fuel transactions."""

    def is_duplicate(self, row: RawStatementRow, prior_imports: PriorImportIndex) -> bool:
        """Check a single row against prior imports.

        Args:
            row: Parsed statement row
            prior_imports: Index of stored transactions

        Returns:
            True if the row was already imported
        """
        return self._match_reason(row, prior_imports) is not None

    def check_batch(
        self,
        rows: list[RawStatementRow],
        prior_imports: PriorImportIndex
    ) -> list[DuplicateCheck]:
        """Check a statement's rows against prior imports and each other.

        A later row repeating an earlier row of the same statement is a duplicate.

        Args:
            rows: Rows in statement order
            prior_imports: Index of stored transactions

        Returns:
            One DuplicateCheck per row, in input order
        """
        seen = PriorImportIndex()
        checks = []

        for row in rows:
            reason = self._match_reason(row, prior_imports)
            if reason is None:
                batch_reason = self._match_reason(row, seen)
                if batch_reason is not None:
                    reason = f"{batch_reason} earlier in this statement"

            checks.append(DuplicateCheck(row=row, is_duplicate=reason is not None, reason=reason))
            seen.add_row(row)

        duplicates = sum(1 for c in checks if c.is_duplicate)
        logger.info(f"Duplicate check: {duplicates} of {len(rows)} rows already imported")
        return checks

    def _match_reason(self, row: RawStatementRow, index: PriorImportIndex) -> str | None:
        if row.source_transaction_id in index.source_ids:
            return "Same transaction id"

        key = fingerprint(row.transaction_date, row.vehicle_identifier, row.total_cost)
        if key in index.fingerprints:
            return "Same date, vehicle and total cost"

        return None
