"""
Pytest configuration and fixtures for fuel import tests.
"""

import os
import sys
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

sys.path.insert(0, str(PROJECT_ROOT / "python"))

from fuel_import.anomaly_checker import FuelHistoryEntry
from fuel_import.config import FuelImportConfig
from fuel_import.duplicate_detector import PriorImportIndex
from fuel_import.errors import StoreError, StoreUnavailableError
from fuel_import.models import RawStatementRow, VehicleDirectoryEntry
from fuel_import.schema import fuel_statements as fuel_statements_table
from fuel_import.schema import vehicles as vehicles_table
from fuel_import.store import FuelDataStore, SqlFuelStore, UnitOfWork, create_store_engine


class InMemoryUnitOfWork(UnitOfWork):
    """Stages writes until the owning store commits the unit."""

    def __init__(self, store: "InMemoryFuelStore"):
        self.store = store
        self.fuel_transactions: list[dict] = []
        self.expense_transactions: list[dict] = []
        self.odometers: dict[str, int] = {}
        self.statement_statuses: dict[str, str] = {}

    @contextmanager
    def savepoint(self):
        fuel_mark = len(self.fuel_transactions)
        expense_mark = len(self.expense_transactions)
        odometers = dict(self.odometers)
        try:
            yield
        except Exception:
            del self.fuel_transactions[fuel_mark:]
            del self.expense_transactions[expense_mark:]
            self.odometers = odometers
            raise

    def insert_fuel_transaction(self, record: dict) -> str:
        source_id = record["source_transaction_id"]

        if source_id in self.store.unavailable_on:
            raise StoreUnavailableError(f"Connection lost inserting {source_id}")
        if source_id in self.store.fail_on:
            raise StoreError(f"Constraint violation inserting {source_id}")

        existing = self.store.fuel_transactions + self.fuel_transactions
        if any(r["source_transaction_id"] == source_id for r in existing):
            raise StoreError(f"Duplicate key: {source_id}")

        new_id = f"ft-{len(existing) + 1}"
        self.fuel_transactions.append({"id": new_id, **record})
        return new_id

    def insert_expense_transaction(self, record: dict) -> str:
        new_id = f"ex-{len(self.store.expense_transactions) + len(self.expense_transactions) + 1}"
        self.expense_transactions.append({"id": new_id, **record})
        return new_id

    def get_vehicle_odometer(self, vehicle_id: str) -> int | None:
        if vehicle_id in self.odometers:
            return self.odometers[vehicle_id]
        if vehicle_id not in self.store.vehicles:
            raise StoreError(f"Unknown vehicle: {vehicle_id}")
        return self.store.vehicles[vehicle_id].current_odometer

    def update_vehicle_odometer(self, vehicle_id: str, odometer: int) -> None:
        if vehicle_id in self.store.fail_odometer_for:
            raise StoreError(f"Odometer write rejected for {vehicle_id}")
        self.odometers[vehicle_id] = odometer
        self.store.odometer_writes.append((vehicle_id, odometer))

    def mark_statement_imported(self, statement_id: str, notes: str) -> bool:
        if statement_id not in self.store.statements:
            return False
        self.statement_statuses[statement_id] = "Imported to AP"
        return True


class InMemoryFuelStore(FuelDataStore):
    """Dict-backed store with failure injection."""

    def __init__(self, vehicles: list[VehicleDirectoryEntry] | None = None):
        self.vehicles = {v.id: v for v in vehicles or []}
        self.fuel_transactions: list[dict] = []
        self.expense_transactions: list[dict] = []
        self.odometer_writes: list[tuple[str, int]] = []
        self.statements: dict[str, str] = {}
        self.committed_units = 0
        self.fail_on: set[str] = set()
        self.unavailable_on: set[str] = set()
        self.fail_odometer_for: set[str] = set()

    def list_active_vehicles(self) -> list[VehicleDirectoryEntry]:
        return [v for v in self.vehicles.values() if v.active]

    def find_prior_imports(self, source_ids, start=None, end=None) -> PriorImportIndex:
        return PriorImportIndex.from_records(self.fuel_transactions)

    def vehicle_history(self, vehicle_ids, limit=10) -> dict[str, list[FuelHistoryEntry]]:
        history = {}
        for vehicle_id in set(vehicle_ids):
            records = sorted(
                (r for r in self.fuel_transactions if r.get("vehicle_id") == vehicle_id),
                key=lambda r: r["transaction_date"],
                reverse=True,
            )
            history[vehicle_id] = [FuelHistoryEntry.from_record(r) for r in records[:limit]]
        return history

    @contextmanager
    def unit_of_work(self):
        uow = InMemoryUnitOfWork(self)
        yield uow
        self.fuel_transactions.extend(uow.fuel_transactions)
        self.expense_transactions.extend(uow.expense_transactions)
        for vehicle_id, odometer in uow.odometers.items():
            self.vehicles[vehicle_id] = replace(self.vehicles[vehicle_id], current_odometer=odometer)
        self.statements.update(uow.statement_statuses)
        self.committed_units += 1

    def source_ids(self) -> list[str]:
        return [r["source_transaction_id"] for r in self.fuel_transactions]


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config_dir() -> Path:
    """Return the config directory path."""
    return PROJECT_ROOT / "config"


@pytest.fixture
def default_config() -> FuelImportConfig:
    """Code defaults: anomaly checks off, expenses off."""
    return FuelImportConfig()


@pytest.fixture
def vehicle_directory() -> list[VehicleDirectoryEntry]:
    """Return a small fleet directory."""
    return [
        VehicleDirectoryEntry(
            id="v-1", asset_id="TRUCK-12", make="Ford", model="F-150",
            year=2021, current_odometer=45000,
        ),
        VehicleDirectoryEntry(
            id="v-2", asset_id="TRUCK-7", make="Chevrolet", model="Silverado",
            year=2019, current_odometer=52000,
        ),
        VehicleDirectoryEntry(
            id="v-3", asset_id="VAN-3", make="Ford", model="Transit",
            year=2020, current_odometer=80000,
        ),
        VehicleDirectoryEntry(
            id="v-4", asset_id="OLD-1", make="Ford", model="Ranger",
            year=2009, current_odometer=45100, active=False,
        ),
    ]


@pytest.fixture
def memory_store(vehicle_directory) -> InMemoryFuelStore:
    """In-memory store seeded with the vehicle directory."""
    return InMemoryFuelStore(vehicle_directory)


@pytest.fixture
def sqlite_store(vehicle_directory):
    """SQLite-backed store seeded with the vehicle directory."""
    engine = create_store_engine("sqlite://")
    store = SqlFuelStore(engine)
    store.create_schema()

    with engine.begin() as conn:
        conn.execute(vehicles_table.insert(), [
            {
                "id": v.id,
                "asset_id": v.asset_id,
                "make": v.make,
                "model": v.model,
                "year": v.year,
                "current_odometer": v.current_odometer,
                "status": "active" if v.active else "retired",
            }
            for v in vehicle_directory
        ])
        conn.execute(fuel_statements_table.insert().values(
            id="stmt-1", file_name="Transactions_01312025_0900.csv", status="Uploaded",
        ))

    yield store
    engine.dispose()


@pytest.fixture
def sample_csv_content() -> str:
    """Return a fuel card statement covering each classification path."""
    return """Trans ID,Transaction Date,Transaction Time,Custom Vehicle/Asset ID,Driver First Name,Driver Last Name,Units,Unit Cost,Total Fuel Cost,Current Odometer,Merchant Name
T1001,01/13/2025,08:15,TRUCK-12,John,Smith,20.5,3.299,67.63,45210,SHELL 123
T1002,01/14/2025,09:30,TRUCK-9,Maria,Lopez,25.0,3.199,79.98,51950,CHEVRON 88
T1003,01/15/2025,10:00,GENERATOR-SVC,Ed,Park,15.0,3.50,52.50,,FLEET FUEL DEPOT
T1004,01/16/2025,11:45,TRUCK-99,Ana,Cruz,18.0,3.25,58.50,12000,SHELL 123
T1005,01/17/2025,14:20,VAN-3,Lee,Wong,30.0,3.10,$93.00,80420,ARCO 7
"""


@pytest.fixture
def make_row():
    """Factory for statement rows with sensible defaults."""
    def _make_row(source_id="T1", **kwargs) -> RawStatementRow:
        values = {
            "source_transaction_id": source_id,
            "transaction_date": datetime(2025, 1, 14, 9, 30),
            "vehicle_identifier": "TRUCK-12",
            "employee_name": "John Smith",
            "gallons": Decimal("20.000"),
            "cost_per_gallon": Decimal("3.2500"),
            "total_cost": Decimal("65.00"),
            "odometer": 45200,
            "merchant_name": "SHELL 123",
            "line_number": 2,
        }
        values.update(kwargs)
        return RawStatementRow(**values)

    return _make_row


# Environment setup for tests
@pytest.fixture(autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("LOG_LEVEL", "WARNING")
    yield
