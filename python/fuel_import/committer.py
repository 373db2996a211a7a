"""
Import Committer Module

Writes approved fuel transactions to the store and ratchets vehicle
odometers, reporting exactly which rows succeeded and which failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from .errors import StoreError, StoreUnavailableError
from .models import CommitResult, FinalRow, OdometerUpdate, TransactionStatus
from .store import FuelDataStore, UnitOfWork

logger = logging.getLogger(__name__)

MISSING_VEHICLE_DETAIL = "Fleet vehicle transaction has no vehicle selected"


@dataclass
class CommitUnit:
    """Rows written in one store transaction.

    A unit is either all fleet rows of a single vehicle, which share one
    odometer write, or a single non-fleet row.
    """

    rows: list[FinalRow]
    vehicle_id: str | None = None
    inserted: list[FinalRow] = field(default_factory=list)


class ImportCommitter:
    """Commits resolved statement rows to a fuel data store."""

    def __init__(
        self,
        store: FuelDataStore,
        create_expense_transactions: bool = False,
        statement_id: str | None = None,
        user_id: str | None = None
    ):
        """Initialize the committer.

        Args:
            store: Store to write to
            create_expense_transactions: Also create accounts payable expenses
            statement_id: Fuel statement recorded on fuel rows and expenses
            user_id: User recorded as creator/approver of expenses
        """
        self.store = store
        self.create_expense_transactions = create_expense_transactions
        self.statement_id = statement_id
        self.user_id = user_id

    def commit(self, final_rows: list[FinalRow]) -> CommitResult:
        """Commit rows, one unit of work per vehicle or non-fleet row.

        Args:
            final_rows: Rows returned by ReconciliationSession.resolve()

        Returns:
            CommitResult accounting for every input row exactly once

        Raises:
            StoreUnavailableError: If the store cannot be reached; the partial
                result is attached and unattempted rows are marked failed
        """
        result = CommitResult()
        units = self._plan_units(final_rows, result)

        logger.info(f"Committing {len(final_rows)} fuel transactions in {len(units)} units")

        for position, unit in enumerate(units):
            try:
                self._commit_unit(unit, result)
            except StoreUnavailableError as e:
                logger.error(f"Store unavailable during commit: {e}")
                for pending in units[position:]:
                    for row in pending.rows:
                        if row.source_transaction_id not in result.failed:
                            result.failed[row.source_transaction_id] = f"Not imported: {e}"
                e.result = result
                raise

        self._order_succeeded(final_rows, result)

        if self.statement_id and self.create_expense_transactions and result.succeeded:
            self._mark_statement_imported(result)

        if result.failed:
            logger.warning(
                f"Import finished with {len(result.failed)} failed rows: {sorted(result.failed)}"
            )
        else:
            logger.info(f"Imported {len(result.succeeded)} fuel transactions")

        return result

    def _plan_units(self, final_rows: list[FinalRow], result: CommitResult) -> list[CommitUnit]:
        by_vehicle: dict[str, CommitUnit] = {}
        units: list[CommitUnit] = []

        for row in final_rows:
            if row.is_fleet_vehicle and not row.vehicle_id:
                result.failed[row.source_transaction_id] = MISSING_VEHICLE_DETAIL
                continue

            if row.is_fleet_vehicle:
                unit = by_vehicle.get(row.vehicle_id)
                if unit is None:
                    unit = CommitUnit(rows=[], vehicle_id=row.vehicle_id)
                    by_vehicle[row.vehicle_id] = unit
                    units.append(unit)
                unit.rows.append(row)
            else:
                units.append(CommitUnit(rows=[row]))

        # Fill-ups for one vehicle are applied oldest first
        for unit in by_vehicle.values():
            unit.rows.sort(key=lambda r: r.transaction_date)

        return units

    def _commit_unit(self, unit: CommitUnit, result: CommitResult) -> None:
        row_failures: dict[str, str] = {}
        odometer_update = None

        try:
            with self.store.unit_of_work() as uow:
                for row in unit.rows:
                    try:
                        with uow.savepoint():
                            self._insert_row(uow, row)
                    except StoreUnavailableError:
                        raise
                    except StoreError as e:
                        logger.warning(f"Failed to import {row.source_transaction_id}: {e}")
                        row_failures[row.source_transaction_id] = str(e)
                        continue
                    unit.inserted.append(row)

                if unit.vehicle_id and unit.inserted:
                    odometer_update = self._ratchet_odometer(uow, unit)
        except StoreUnavailableError:
            raise
        except StoreError as e:
            # The whole unit rolled back, including rows that had inserted cleanly
            logger.warning(f"Rolled back import unit for vehicle {unit.vehicle_id}: {e}")
            for row in unit.rows:
                result.failed[row.source_transaction_id] = row_failures.get(
                    row.source_transaction_id, str(e)
                )
            return

        result.failed.update(row_failures)
        result.succeeded.extend(r.source_transaction_id for r in unit.inserted)
        if odometer_update:
            result.odometer_updates.append(odometer_update)
        if self.create_expense_transactions:
            result.expenses_created += len(unit.inserted)

    def _insert_row(self, uow: UnitOfWork, row: FinalRow) -> None:
        record = row.to_record()
        record["fuel_statement_id"] = self.statement_id
        fuel_transaction_id = uow.insert_fuel_transaction(record)

        if self.create_expense_transactions:
            uow.insert_expense_transaction(self._expense_record(row, fuel_transaction_id))

    def _ratchet_odometer(self, uow: UnitOfWork, unit: CommitUnit) -> OdometerUpdate | None:
        """Issue at most one odometer write for the unit's vehicle.

        Only rows that were inserted count, and the stored value never decreases.
        """
        readings = [r.odometer for r in unit.inserted if r.odometer and r.odometer > 0]
        if not readings:
            return None

        current = uow.get_vehicle_odometer(unit.vehicle_id)
        target = max(readings)

        if current is not None and target <= current:
            logger.debug(
                f"Vehicle {unit.vehicle_id} odometer stays at {current} (statement max {target})"
            )
            return None

        uow.update_vehicle_odometer(unit.vehicle_id, target)
        logger.info(f"Vehicle {unit.vehicle_id} odometer {current} -> {target}")
        return OdometerUpdate(vehicle_id=unit.vehicle_id, previous_odometer=current, new_odometer=target)

    def _mark_statement_imported(self, result: CommitResult) -> None:
        """Flag the source statement as imported to accounts payable.

        Runs after every row is committed, so a failure here is logged and
        reported on the result without undoing the import.
        """
        notes = f"{result.expenses_created} transactions imported to Accounts Payable"

        try:
            with self.store.unit_of_work() as uow:
                found = uow.mark_statement_imported(self.statement_id, notes)
        except StoreError as e:
            logger.warning(f"Could not update status of fuel statement {self.statement_id}: {e}")
            return

        if not found:
            logger.warning(f"Fuel statement {self.statement_id} not found; status not updated")
            return

        result.statement_marked_imported = True
        logger.info(f"Fuel statement {self.statement_id} marked as imported")

    def _expense_record(self, row: FinalRow, fuel_transaction_id: str) -> dict:
        """Accounts payable expense for an imported fuel purchase."""
        verified = row.status == TransactionStatus.NEW
        label = row.vehicle_identifier if row.vehicle_id else "Unmatched"
        if not row.is_fleet_vehicle:
            label = row.transaction_type.value

        return {
            "fuel_transaction_id": fuel_transaction_id,
            "transaction_date": row.transaction_date,
            "expense_type": "fuel_purchase",
            "amount": row.total_cost,
            "description": f"Fuel - {row.merchant_name} - {label}",
            "vendor_name": row.merchant_name,
            "invoice_number": row.source_transaction_id,
            "fuel_statement_id": self.statement_id,
            "has_receipt": False,
            "receipt_required": True,
            "payment_status": "paid",
            "approval_status": "auto_approved" if verified else "pending_review",
            "approved_at": datetime.now() if verified else None,
            "approved_by": self.user_id if verified else None,
            "created_by": self.user_id,
            "flagged_for_review": not verified,
            "flag_reason": row.flag_reason,
        }

    def _order_succeeded(self, final_rows: list[FinalRow], result: CommitResult) -> None:
        position = {r.source_transaction_id: i for i, r in enumerate(final_rows)}
        result.succeeded.sort(key=lambda source_id: position.get(source_id, 0))
