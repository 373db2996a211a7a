"""
Database schema for fleet vehicles, uploaded fuel statements, imported fuel
transactions and the accounts payable expenses created from them.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
)

metadata = MetaData()

vehicles = Table(
    "vehicles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("asset_id", String(64), index=True),
    Column("make", String(100)),
    Column("model", String(100)),
    Column("year", Integer),
    Column("current_odometer", Integer),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("updated_at", DateTime, server_default=func.now()),
)

fuel_statements = Table(
    "fuel_statements",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("file_name", String(255)),
    Column("statement_end_date", DateTime),
    Column("status", String(32), nullable=False, server_default="Uploaded"),
    Column("processing_notes", Text),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

fuel_transactions = Table(
    "fuel_transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("source_transaction_id", String(64), nullable=False, unique=True),
    Column("transaction_date", DateTime, nullable=False),
    Column("vehicle_identifier", String(64)),
    Column("vehicle_id", String(36), ForeignKey("vehicles.id")),
    Column("employee_name", String(200)),
    Column("gallons", Numeric(10, 3), nullable=False),
    Column("cost_per_gallon", Numeric(10, 4), nullable=False),
    Column("total_cost", Numeric(12, 2), nullable=False),
    Column("odometer", Integer),
    Column("merchant_name", String(255)),
    Column("status", String(32), nullable=False),
    Column("flag_reason", Text),
    Column("transaction_type", String(32), nullable=False),
    Column("match_type", String(32)),
    Column("fuel_statement_id", String(64)),
    Column("created_at", DateTime, server_default=func.now()),
)

Index("idx_fuel_transactions_date", fuel_transactions.c.transaction_date)
Index(
    "idx_fuel_transactions_vehicle",
    fuel_transactions.c.vehicle_id,
    fuel_transactions.c.transaction_date,
)

expense_transactions = Table(
    "expense_transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("fuel_transaction_id", String(36), ForeignKey("fuel_transactions.id")),
    Column("transaction_date", DateTime, nullable=False),
    Column("expense_type", String(50), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", Text),
    Column("vendor_name", String(255)),
    Column("invoice_number", String(64)),
    Column("fuel_statement_id", String(64)),
    Column("has_receipt", Boolean, nullable=False, default=False),
    Column("receipt_required", Boolean, nullable=False, default=True),
    Column("payment_status", String(20), nullable=False),
    Column("approval_status", String(20), nullable=False),
    Column("approved_at", DateTime),
    Column("approved_by", String(64)),
    Column("created_by", String(64)),
    Column("flagged_for_review", Boolean, nullable=False, default=False),
    Column("flag_reason", Text),
    Column("created_at", DateTime, server_default=func.now()),
)
