"""
Fuel Statement Processor

Runs a statement through parsing, vehicle matching, duplicate detection
and classification to produce a reconciliation session, and commits
approved sessions.
"""

import logging
from collections import defaultdict
from pathlib import Path

from .anomaly_checker import AnomalyChecker, FuelHistoryEntry
from .classifier import TransactionClassifier
from .committer import ImportCommitter
from .config import FuelImportConfig, load_config
from .duplicate_detector import DuplicateCheck, DuplicateDetector
from .errors import StoreUnavailableError
from .models import CommitResult, MatchResult, MatchType, RawStatementRow
from .session import ReconciliationSession
from .statement_parser import FuelStatementParser, ParseResult, statement_end_date_from_filename
from .store import FuelDataStore
from .vehicle_matcher import VehicleMatcher

logger = logging.getLogger(__name__)


class FuelStatementProcessor:
    """End-to-end fuel statement reconciliation against a store."""

    def __init__(
        self,
        store: FuelDataStore,
        config: FuelImportConfig | None = None,
        parser: FuelStatementParser | None = None
    ):
        """Initialize the processor.

        Args:
            store: Vehicle directory, prior imports and commit sink
            config: Pipeline configuration (loaded from config/ if omitted)
            parser: Statement parser
        """
        self.store = store
        self.config = config or load_config()
        self.parser = parser or FuelStatementParser()
        self.matcher = VehicleMatcher(self.config.matching)
        self.detector = DuplicateDetector()
        self.anomaly_checker = AnomalyChecker(self.config.anomaly_checks)
        self.classifier = TransactionClassifier(
            self.config.classification,
            anomaly_checker=self.anomaly_checker if self.anomaly_checker.enabled else None,
        )

    def process(self, data: bytes | str, filename: str | None = None) -> ReconciliationSession:
        """Process an uploaded statement into a reconciliation session.

        Nothing is written to the store.

        Args:
            data: Statement content (bytes as uploaded, or decoded CSV text)
            filename: Original file name

        Returns:
            Open ReconciliationSession

        Raises:
            ParseError: If the statement cannot be parsed
            StoreError: If reference data cannot be read
        """
        if isinstance(data, str):
            result = self.parser.parse_content(data)
            result.source_name = filename
            result.statement_end_date = statement_end_date_from_filename(filename)
        else:
            result = self.parser.parse(data, filename=filename)

        return self.reconcile(result)

    def process_file(self, file_path: Path | str) -> ReconciliationSession:
        """Process a statement file from disk."""
        return self.reconcile(self.parser.parse_file(file_path))

    def reconcile(self, parsed: ParseResult) -> ReconciliationSession:
        """Match, dedupe and classify parsed rows.

        Args:
            parsed: Result of parsing a statement

        Returns:
            Open ReconciliationSession
        """
        rows = parsed.rows
        directory = self.store.list_active_vehicles()

        dates = [r.transaction_date.date() for r in rows]
        prior_imports = self.store.find_prior_imports(
            [r.source_transaction_id for r in rows],
            start=min(dates) if dates else None,
            end=max(dates) if dates else None,
        )
        logger.info(
            f"Reconciling {len(rows)} rows against {len(directory)} vehicles "
            f"and {len(prior_imports)} prior imports"
        )

        matches = [self.matcher.match(row, directory) for row in rows]
        duplicates = self.detector.check_batch(rows, prior_imports)

        histories = [None] * len(rows)
        if self.anomaly_checker.enabled:
            histories = self._row_histories(rows, matches, duplicates)

        transactions = [
            self.classifier.classify(row, match, check.is_duplicate, history=history)
            for row, match, check, history in zip(rows, matches, duplicates, histories)
        ]

        session = ReconciliationSession(
            transactions=transactions,
            directory=directory,
            parse_errors=list(parsed.errors),
            source_name=parsed.source_name,
            statement_end_date=parsed.statement_end_date,
        )

        summary = session.summary()
        direct = sum(1 for m in matches if m.match_type == MatchType.DIRECT_ID)
        logger.info(
            f"Session {session.session_id}: {summary.total} rows, {summary.new} new, "
            f"{summary.duplicate} duplicate, {summary.flagged} flagged "
            f"({direct} direct matches, {len(parsed.errors)} rejected lines)"
        )

        return session

    def _row_histories(
        self,
        rows: list[RawStatementRow],
        matches: list[MatchResult],
        duplicates: list[DuplicateCheck],
    ) -> list[list[FuelHistoryEntry] | None]:
        """Recent purchases for each row's vehicle, newest first.

        Earlier fill-ups of the same vehicle in this statement come ahead of
        the stored history, so consecutive fill-ups are compared with each
        other rather than both with the last imported one.
        """
        vehicle_ids = [m.vehicle_id for m in matches if m.vehicle_id]
        if not vehicle_ids:
            return [None] * len(rows)

        limit = self.config.anomaly_checks.history_size
        stored = self.store.vehicle_history(vehicle_ids, limit=limit)

        by_vehicle: dict[str, list[int]] = defaultdict(list)
        for index, match in enumerate(matches):
            if match.vehicle_id:
                by_vehicle[match.vehicle_id].append(index)

        histories: list[list[FuelHistoryEntry] | None] = [None] * len(rows)
        for vehicle_id, indexes in by_vehicle.items():
            earlier: list[FuelHistoryEntry] = []
            for index in sorted(indexes, key=lambda i: rows[i].transaction_date):
                row = rows[index]
                histories[index] = (earlier + stored.get(vehicle_id, []))[:limit]
                # Duplicates are already part of the stored history
                if not duplicates[index].is_duplicate:
                    earlier.insert(0, FuelHistoryEntry(
                        gallons=row.gallons, total_cost=row.total_cost, odometer=row.odometer,
                    ))

        return histories

    def commit(
        self,
        session: ReconciliationSession,
        create_expense_transactions: bool | None = None,
        statement_id: str | None = None,
        user_id: str | None = None
    ) -> CommitResult:
        """Commit a session's New and Flagged rows.

        The session is closed once every row has been attempted, even if some
        rows failed; the result reports them. If the store goes away part way
        through, the rows already written are recorded on the session, which
        stays open so the commit can be retried without writing them twice.

        Args:
            session: Open reconciliation session
            create_expense_transactions: Override the configured expense setting
            statement_id: Fuel statement the rows and expenses belong to
            user_id: User approving the import

        Returns:
            CommitResult

        Raises:
            ValidationError: If a fleet row has no vehicle (nothing is written)
            SessionClosedError: If the session is no longer open
            StoreUnavailableError: If the store cannot be reached
        """
        final_rows = session.resolve()

        if create_expense_transactions is None:
            create_expense_transactions = self.config.import_settings.create_expense_transactions

        committer = ImportCommitter(
            self.store,
            create_expense_transactions=create_expense_transactions,
            statement_id=statement_id,
            user_id=user_id,
        )
        previously_imported = session.already_imported()

        try:
            result = committer.commit(final_rows)
        except StoreUnavailableError as e:
            if e.result is not None:
                e.result.already_imported = previously_imported
                session.mark_partially_committed(e.result.succeeded)
            raise

        result.already_imported = previously_imported
        session.mark_committed()

        logger.info(
            f"Session {session.session_id} committed: {len(result.succeeded)} imported, "
            f"{len(result.failed)} failed"
        )
        return result
