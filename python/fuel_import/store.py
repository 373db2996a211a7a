"""
Fuel Data Store Module

Store interface used by the pipeline (vehicle directory, prior-import lookup,
commit sink) and its SQLAlchemy implementation.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Iterator

from sqlalchemy import create_engine, event, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .anomaly_checker import FuelHistoryEntry
from .duplicate_detector import PriorImportIndex
from .errors import StoreError, StoreUnavailableError
from .models import VehicleDirectoryEntry
from .schema import expense_transactions, fuel_statements, fuel_transactions, metadata, vehicles

logger = logging.getLogger(__name__)

STATEMENT_IMPORTED_STATUS = "Imported to AP"


class UnitOfWork(ABC):
    """Writes that are committed together or not at all."""

    @abstractmethod
    def savepoint(self) -> AbstractContextManager:
        """Nested scope whose writes roll back alone if it raises."""
        pass

    @abstractmethod
    def insert_fuel_transaction(self, record: dict[str, Any]) -> str:
        """Insert a fuel transaction and return its new id."""
        pass

    @abstractmethod
    def insert_expense_transaction(self, record: dict[str, Any]) -> str:
        """Insert an accounts payable expense and return its new id."""
        pass

    @abstractmethod
    def get_vehicle_odometer(self, vehicle_id: str) -> int | None:
        """Read the stored odometer of a vehicle.

        Raises:
            StoreError: If the vehicle does not exist
        """
        pass

    @abstractmethod
    def update_vehicle_odometer(self, vehicle_id: str, odometer: int) -> None:
        """Write a vehicle's odometer."""
        pass

    @abstractmethod
    def mark_statement_imported(self, statement_id: str, notes: str) -> bool:
        """Set a fuel statement's status to imported.

        Returns:
            False if no statement has that id
        """
        pass


class FuelDataStore(ABC):
    """External store the reconciliation pipeline reads from and commits to."""

    @abstractmethod
    def list_active_vehicles(self) -> list[VehicleDirectoryEntry]:
        """Snapshot of the active fleet."""
        pass

    @abstractmethod
    def find_prior_imports(
        self,
        source_ids: list[str],
        start: date | None = None,
        end: date | None = None
    ) -> PriorImportIndex:
        """Index of stored transactions sharing an id with, or falling in the date range of, a statement."""
        pass

    @abstractmethod
    def vehicle_history(
        self,
        vehicle_ids: list[str],
        limit: int = 10
    ) -> dict[str, list[FuelHistoryEntry]]:
        """Most recent fuel purchases per vehicle, newest first."""
        pass

    @abstractmethod
    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:
        """Open a transactional unit of work.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        pass


def create_store_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine for the fuel store.

    SQLite connections are set up so that SAVEPOINT works and, for in-memory
    databases, so that every connection sees the same data.

    Args:
        database_url: SQLAlchemy database URL
        **kwargs: Extra create_engine arguments

    Returns:
        Engine
    """
    if not database_url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
        return create_engine(database_url, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs.setdefault("poolclass", StaticPool)

    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _translate_error(error: SQLAlchemyError, action: str) -> StoreError:
    if isinstance(error, OperationalError) or (
        isinstance(error, DBAPIError) and error.connection_invalidated
    ):
        return StoreUnavailableError(f"Store unavailable while trying to {action}: {error.orig}")

    detail = getattr(error, "orig", None) or error
    return StoreError(f"Failed to {action}: {detail}")


class SqlUnitOfWork(UnitOfWork):
    """Unit of work bound to one database transaction."""

    def __init__(self, conn: Connection):
        self.conn = conn

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        try:
            nested = self.conn.begin_nested()
        except SQLAlchemyError as e:
            raise _translate_error(e, "open savepoint") from e

        try:
            yield
        except Exception:
            nested.rollback()
            raise

        try:
            nested.commit()
        except SQLAlchemyError as e:
            raise _translate_error(e, "release savepoint") from e

    def insert_fuel_transaction(self, record: dict[str, Any]) -> str:
        new_id = str(uuid.uuid4())

        try:
            self.conn.execute(fuel_transactions.insert().values(id=new_id, **record))
        except SQLAlchemyError as e:
            raise _translate_error(
                e, f"insert fuel transaction {record.get('source_transaction_id')}"
            ) from e

        return new_id

    def insert_expense_transaction(self, record: dict[str, Any]) -> str:
        new_id = str(uuid.uuid4())

        try:
            self.conn.execute(expense_transactions.insert().values(id=new_id, **record))
        except SQLAlchemyError as e:
            raise _translate_error(e, "insert expense transaction") from e

        return new_id

    def get_vehicle_odometer(self, vehicle_id: str) -> int | None:
        try:
            row = self.conn.execute(
                select(vehicles.c.current_odometer).where(vehicles.c.id == vehicle_id)
            ).first()
        except SQLAlchemyError as e:
            raise _translate_error(e, f"read odometer of vehicle {vehicle_id}") from e

        if row is None:
            raise StoreError(f"Unknown vehicle: {vehicle_id}")

        return row.current_odometer

    def update_vehicle_odometer(self, vehicle_id: str, odometer: int) -> None:
        # The WHERE clause keeps the ratchet even if another writer got there first
        stmt = (
            update(vehicles)
            .where(vehicles.c.id == vehicle_id)
            .where(or_(vehicles.c.current_odometer.is_(None), vehicles.c.current_odometer < odometer))
            .values(current_odometer=odometer, updated_at=datetime.now())
        )

        try:
            self.conn.execute(stmt)
        except SQLAlchemyError as e:
            raise _translate_error(e, f"update odometer of vehicle {vehicle_id}") from e

    def mark_statement_imported(self, statement_id: str, notes: str) -> bool:
        stmt = (
            update(fuel_statements)
            .where(fuel_statements.c.id == statement_id)
            .values(status=STATEMENT_IMPORTED_STATUS, processing_notes=notes, updated_at=datetime.now())
        )

        try:
            return self.conn.execute(stmt).rowcount > 0
        except SQLAlchemyError as e:
            raise _translate_error(e, f"update status of fuel statement {statement_id}") from e


class SqlFuelStore(FuelDataStore):
    """Fuel store backed by the vehicles and fuel_transactions tables."""

    def __init__(self, engine: Engine):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine (see create_store_engine)
        """
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SqlFuelStore":
        return cls(create_store_engine(database_url))

    def create_schema(self) -> None:
        """Create missing tables."""
        metadata.create_all(self.engine)

    def _fetch(self, stmt, action: str) -> list[dict]:
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise _translate_error(e, action) from e

    def list_active_vehicles(self) -> list[VehicleDirectoryEntry]:
        stmt = (
            select(vehicles)
            .where(or_(vehicles.c.status.is_(None), vehicles.c.status == "active"))
            .order_by(vehicles.c.asset_id)
        )
        records = self._fetch(stmt, "load vehicle directory")
        return [VehicleDirectoryEntry.from_record(r) for r in records]

    def find_prior_imports(
        self,
        source_ids: list[str],
        start: date | None = None,
        end: date | None = None
    ) -> PriorImportIndex:
        conditions = []
        if source_ids:
            conditions.append(fuel_transactions.c.source_transaction_id.in_(list(source_ids)))
        if start and end:
            conditions.append(fuel_transactions.c.transaction_date.between(
                datetime.combine(start, datetime.min.time()),
                datetime.combine(end + timedelta(days=1), datetime.min.time()),
            ))

        if not conditions:
            return PriorImportIndex()

        stmt = select(
            fuel_transactions.c.source_transaction_id,
            fuel_transactions.c.transaction_date,
            fuel_transactions.c.vehicle_identifier,
            fuel_transactions.c.total_cost,
        ).where(or_(*conditions))

        records = self._fetch(stmt, "look up prior imports")
        logger.debug(f"Found {len(records)} prior fuel transactions for duplicate check")
        return PriorImportIndex.from_records(records)

    def vehicle_history(
        self,
        vehicle_ids: list[str],
        limit: int = 10
    ) -> dict[str, list[FuelHistoryEntry]]:
        history: dict[str, list[FuelHistoryEntry]] = {}

        for vehicle_id in sorted(set(vehicle_ids)):
            stmt = (
                select(
                    fuel_transactions.c.gallons,
                    fuel_transactions.c.total_cost,
                    fuel_transactions.c.odometer,
                )
                .where(fuel_transactions.c.vehicle_id == vehicle_id)
                .order_by(fuel_transactions.c.transaction_date.desc())
                .limit(limit)
            )
            records = self._fetch(stmt, f"load fuel history of vehicle {vehicle_id}")
            history[vehicle_id] = [FuelHistoryEntry.from_record(r) for r in records]

        return history

    @contextmanager
    def unit_of_work(self) -> Iterator[SqlUnitOfWork]:
        try:
            with self.engine.connect() as conn:
                with conn.begin():
                    yield SqlUnitOfWork(conn)
        except SQLAlchemyError as e:
            raise _translate_error(e, "commit unit of work") from e
