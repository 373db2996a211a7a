"""
Command-line fuel statement import.

Usage:
    python -m fuel_import.cli Transactions_01312025_0900.csv --database-url sqlite:///fleet.db
    python -m fuel_import.cli statement.xlsx --commit --create-expenses
"""

import json
import logging
import os
import sys

from .config import load_config
from .errors import FuelImportError, ValidationError
from .models import CommitResult, TransactionStatus
from .processor import FuelStatementProcessor
from .session import ReconciliationSession
from .store import SqlFuelStore

logger = logging.getLogger(__name__)


def format_report(session: ReconciliationSession) -> str:
    """Format a reconciliation session as a plain-text report.

    Args:
        session: Processed session

    Returns:
        Report text
    """
    summary = session.summary()

    lines = [
        "Fuel Statement Reconciliation",
        "",
        f"Statement: {session.source_name or '-'}",
        f"Statement end date: {session.statement_end_date or '-'}",
        "",
        f"Total: {summary.total}",
        f"• New: {summary.new}",
        f"• Duplicate: {summary.duplicate}",
        f"• Flagged: {summary.flagged}",
    ]

    flagged = [t for t in session.transactions if t.status == TransactionStatus.FLAGGED]
    if flagged:
        lines.extend(["", "Flagged for review:"])
        for txn in flagged[:20]:
            row = txn.row
            lines.append(
                f"• {row.source_transaction_id} {row.transaction_date:%Y-%m-%d} "
                f"{row.vehicle_identifier or '(no id)'} ${row.total_cost:,.2f} - {txn.flag_reason}"
            )
        if len(flagged) > 20:
            lines.append(f"...and {len(flagged) - 20} more")

    if session.parse_errors:
        lines.extend(["", f"Rejected lines: {len(session.parse_errors)}"])
        for error in session.parse_errors[:10]:
            lines.append(f"• {error}")

    return "\n".join(lines)


def format_commit_result(result: CommitResult) -> str:
    """Format a commit result as a plain-text report."""
    lines = [
        "",
        f"Imported: {len(result.succeeded)}",
        f"Failed: {len(result.failed)}",
    ]

    for source_id, detail in result.failed.items():
        lines.append(f"• {source_id}: {detail}")

    if result.odometer_updates:
        lines.extend(["", "Odometer updates:"])
        for update in result.odometer_updates:
            lines.append(
                f"• {update.vehicle_id}: {update.previous_odometer or 0:,} -> {update.new_odometer:,}"
            )

    if result.expenses_created:
        lines.append(f"Expense transactions created: {result.expenses_created}")

    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Reconcile and import a fuel card statement")
    parser.add_argument("statement", help="Statement file (.csv or .xlsx)")
    parser.add_argument("--config-dir", help="Directory containing fuel_reconciliation.yaml")
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", "sqlite:///fuel_import.db"),
        help="SQLAlchemy database URL",
    )
    parser.add_argument("--commit", action="store_true", help="Import new and flagged rows")
    parser.add_argument(
        "--create-expenses", action="store_true", help="Also create accounts payable expenses"
    )
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a report")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config_dir)
        store = SqlFuelStore.from_url(args.database_url)
        store.create_schema()
        processor = FuelStatementProcessor(store, config=config)

        session = processor.process_file(args.statement)
        output = {"session": session.to_dict()}
        if not args.json:
            print(format_report(session))

        result = None
        if args.commit:
            result = processor.commit(
                session,
                create_expense_transactions=args.create_expenses or None,
            )
            output["commit"] = result.to_dict()
            if not args.json:
                print(format_commit_result(result))
    except ValidationError as e:
        logger.error(str(e))
        if args.json:
            print(json.dumps({"error": str(e), "source_ids": e.source_ids}, indent=2))
        return 1
    except (FuelImportError, OSError) as e:
        logger.error(str(e))
        return 1

    if args.json:
        print(json.dumps(output, indent=2, default=str))

    if result is not None and not result.is_complete:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
