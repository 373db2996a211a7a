"""
Import Committer Tests

Tests for per-row commit outcomes, per-vehicle atomicity and the
odometer ratchet.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from fuel_import.committer import ImportCommitter
from fuel_import.errors import CommitPartialFailure, StoreUnavailableError
from fuel_import.models import FinalRow, MatchType, TransactionStatus, TransactionType


@pytest.fixture
def make_final_row():
    """Factory for commit-ready rows."""
    def _make_final_row(source_id, vehicle_id="v-1", odometer=45200, day=14, **kwargs) -> FinalRow:
        values = {
            "source_transaction_id": source_id,
            "transaction_date": datetime(2025, 1, day, 9, 0),
            "vehicle_identifier": "TRUCK-12",
            "employee_name": "John Smith",
            "gallons": Decimal("20.000"),
            "cost_per_gallon": Decimal("3.2500"),
            "total_cost": Decimal("65.00"),
            "odometer": odometer,
            "merchant_name": "SHELL 123",
            "status": TransactionStatus.NEW,
            "transaction_type": TransactionType.FLEET_VEHICLE,
            "vehicle_id": vehicle_id,
            "match_type": MatchType.DIRECT_ID,
        }
        values.update(kwargs)
        return FinalRow(**values)

    return _make_final_row


class TestImportCommitter:
    """Tests for ImportCommitter.commit()."""

    def test_commit_all_rows(self, memory_store, make_final_row):
        """Test a clean batch imports every row."""
        rows = [make_final_row("A"), make_final_row("B", vehicle_id="v-3", odometer=80420)]

        result = ImportCommitter(memory_store).commit(rows)

        assert result.succeeded == ["A", "B"]
        assert result.failed == {}
        assert result.is_complete
        assert memory_store.source_ids() == ["A", "B"]
        stored = memory_store.fuel_transactions[0]
        assert stored["status"] == "Verified"
        assert stored["match_type"] == "Direct ID Match"
        assert stored["vehicle_id"] == "v-1"

    def test_odometer_ratchet_single_write(self, memory_store, make_final_row):
        """Test one write per vehicle using the highest reading."""
        rows = [
            make_final_row("A", odometer=45600, day=15),
            make_final_row("B", odometer=45300, day=13),
            make_final_row("C", odometer=45450, day=14),
        ]

        result = ImportCommitter(memory_store).commit(rows)

        assert memory_store.odometer_writes == [("v-1", 45600)]
        assert memory_store.vehicles["v-1"].current_odometer == 45600
        assert len(result.odometer_updates) == 1
        update = result.odometer_updates[0]
        assert update.previous_odometer == 45000
        assert update.change == 600

    def test_odometer_never_decreases(self, memory_store, make_final_row):
        """Test lower readings leave the stored odometer alone."""
        result = ImportCommitter(memory_store).commit([make_final_row("A", vehicle_id="v-2", odometer=51950)])

        assert result.succeeded == ["A"]
        assert memory_store.odometer_writes == []
        assert memory_store.vehicles["v-2"].current_odometer == 52000
        assert result.odometer_updates == []

    def test_partial_failure_reports_each_row(self, memory_store, make_final_row):
        """Test four successes and one failure are both reported."""
        rows = [
            make_final_row("A", odometer=45100),
            make_final_row("B", odometer=45200),
            make_final_row("C", odometer=45900),
            make_final_row("D", vehicle_id="v-3", odometer=80100),
            make_final_row("E", vehicle_id="v-3", odometer=80200),
        ]
        memory_store.fail_on = {"C"}

        result = ImportCommitter(memory_store).commit(rows)

        assert result.succeeded == ["A", "B", "D", "E"]
        assert list(result.failed) == ["C"]
        assert result.total == 5
        assert not result.is_complete

        # The failed row's reading does not count toward the ratchet
        assert memory_store.vehicles["v-1"].current_odometer == 45200
        assert memory_store.vehicles["v-3"].current_odometer == 80200

        with pytest.raises(CommitPartialFailure) as exc_info:
            result.raise_for_failures()
        assert exc_info.value.result is result
        assert "1 of 5" in str(exc_info.value)

    def test_odometer_failure_rolls_back_vehicle(self, memory_store, make_final_row):
        """Test a failed odometer write fails every row of that vehicle."""
        rows = [
            make_final_row("A", odometer=45300),
            make_final_row("B", odometer=45400),
            make_final_row("C", vehicle_id="v-3", odometer=80100),
        ]
        memory_store.fail_odometer_for = {"v-1"}

        result = ImportCommitter(memory_store).commit(rows)

        assert result.succeeded == ["C"]
        assert set(result.failed) == {"A", "B"}
        assert memory_store.source_ids() == ["C"]
        assert memory_store.vehicles["v-1"].current_odometer == 45000

    def test_fleet_row_without_vehicle_rejected(self, memory_store, make_final_row):
        """Test fleet rows with no vehicle never reach the store."""
        rows = [make_final_row("A"), make_final_row("B", vehicle_id=None)]

        result = ImportCommitter(memory_store).commit(rows)

        assert result.succeeded == ["A"]
        assert "no vehicle" in result.failed["B"]
        assert memory_store.source_ids() == ["A"]

    def test_non_fleet_rows_stored_without_vehicle(self, memory_store, make_final_row):
        """Test auxiliary rows never carry a vehicle association."""
        row = make_final_row(
            "A",
            vehicle_id="v-1",
            vehicle_identifier="GENERATOR-SVC",
            transaction_type=TransactionType.AUXILIARY_FUEL,
            odometer=None,
            match_type=MatchType.UNMATCHED,
        )

        result = ImportCommitter(memory_store).commit([row])

        assert result.succeeded == ["A"]
        assert memory_store.fuel_transactions[0]["vehicle_id"] is None
        assert memory_store.fuel_transactions[0]["transaction_type"] == "Auxiliary Fuel"
        assert memory_store.odometer_writes == []

    def test_flagged_status_persisted(self, memory_store, make_final_row):
        """Test flagged rows keep their reason."""
        row = make_final_row("A", status=TransactionStatus.FLAGGED, flag_reason="Low-confidence match")

        ImportCommitter(memory_store).commit([row])

        stored = memory_store.fuel_transactions[0]
        assert stored["status"] == "Flagged for Review"
        assert stored["flag_reason"] == "Low-confidence match"

    def test_store_unavailable_is_hard_stop(self, memory_store, make_final_row):
        """Test connectivity loss stops the commit with a partial result."""
        rows = [
            make_final_row("A", vehicle_id="v-3", odometer=80100),
            make_final_row("B"),
            make_final_row("C", vehicle_id="v-2", odometer=52100),
        ]
        memory_store.unavailable_on = {"B"}

        with pytest.raises(StoreUnavailableError) as exc_info:
            ImportCommitter(memory_store).commit(rows)

        result = exc_info.value.result
        assert result.succeeded == ["A"]
        assert set(result.failed) == {"B", "C"}
        assert memory_store.source_ids() == ["A"]

    def test_existing_source_id_fails_row(self, memory_store, make_final_row):
        """Test a unique-key clash fails only that row."""
        ImportCommitter(memory_store).commit([make_final_row("A")])

        result = ImportCommitter(memory_store).commit([make_final_row("A"), make_final_row("B")])

        assert result.succeeded == ["B"]
        assert "Duplicate key" in result.failed["A"]

    def test_expense_transactions(self, memory_store, make_final_row):
        """Test optional accounts payable expenses."""
        memory_store.statements["stmt-1"] = "Uploaded"
        rows = [
            make_final_row("A"),
            make_final_row("B", status=TransactionStatus.FLAGGED, flag_reason="Weekend transaction"),
        ]
        committer = ImportCommitter(
            memory_store, create_expense_transactions=True, statement_id="stmt-1", user_id="u-7"
        )

        result = committer.commit(rows)

        assert result.expenses_created == 2
        verified, flagged = memory_store.expense_transactions
        assert verified["fuel_transaction_id"] == memory_store.fuel_transactions[0]["id"]
        assert verified["expense_type"] == "fuel_purchase"
        assert verified["description"] == "Fuel - SHELL 123 - TRUCK-12"
        assert verified["approval_status"] == "auto_approved"
        assert verified["approved_by"] == "u-7"
        assert verified["fuel_statement_id"] == "stmt-1"
        assert flagged["approval_status"] == "pending_review"
        assert flagged["flagged_for_review"] is True
        assert flagged["approved_by"] is None

    def test_statement_recorded_on_fuel_rows(self, memory_store, make_final_row):
        """Test fuel rows carry the statement id and the statement is marked imported."""
        memory_store.statements["stmt-1"] = "Uploaded"
        rows = [make_final_row("A"), make_final_row("B", vehicle_id="v-3", odometer=80420)]
        committer = ImportCommitter(memory_store, create_expense_transactions=True, statement_id="stmt-1")

        result = committer.commit(rows)

        assert [r["fuel_statement_id"] for r in memory_store.fuel_transactions] == ["stmt-1", "stmt-1"]
        assert [r["fuel_statement_id"] for r in memory_store.expense_transactions] == ["stmt-1", "stmt-1"]
        assert memory_store.statements["stmt-1"] == "Imported to AP"
        assert result.statement_marked_imported is True

    def test_statement_untouched_without_expenses(self, memory_store, make_final_row):
        """Test the statement status only changes when expenses are created."""
        memory_store.statements["stmt-1"] = "Uploaded"

        result = ImportCommitter(memory_store, statement_id="stmt-1").commit([make_final_row("A")])

        assert memory_store.fuel_transactions[0]["fuel_statement_id"] == "stmt-1"
        assert memory_store.statements["stmt-1"] == "Uploaded"
        assert result.statement_marked_imported is False

    def test_no_expenses_by_default(self, memory_store, make_final_row):
        """Test expenses are only created when enabled."""
        result = ImportCommitter(memory_store).commit([make_final_row("A")])

        assert result.expenses_created == 0
        assert memory_store.expense_transactions == []

    def test_result_to_dict(self, memory_store, make_final_row):
        """Test the commit payload."""
        result = ImportCommitter(memory_store).commit([make_final_row("A", odometer=45500)])

        data = result.to_dict()

        assert data["success"] is True
        assert data["transactions_imported"] == 1
        assert data["odometer_updates"] == [
            {"vehicle_id": "v-1", "previous_odometer": 45000, "new_odometer": 45500, "change": 500}
        ]
