"""
Transaction Classifier Module

Assigns each statement row a status (new, duplicate, flagged) and a
transaction type (fleet vehicle, auxiliary fuel, rental equipment).
"""

import logging
import re

from .anomaly_checker import AnomalyChecker, FuelHistoryEntry
from .config import ClassificationConfig
from .models import (
    DUPLICATE_REASON,
    MatchResult,
    MatchType,
    ProcessedTransaction,
    RawStatementRow,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)

UNMATCHED_VEHICLE_REASON = "Unmatched vehicle — manual selection required"
LOW_CONFIDENCE_REASON = "Low-confidence match"


class TransactionClassifier:
    """Classifies matched statement rows.

    Rules are applied in order and the first one that applies wins:

    1. Duplicates are marked duplicate and never flagged.
    2. Unmatched rows whose identifier looks like a vehicle id are fleet
       transactions flagged for manual vehicle selection.
    3. Other unmatched rows are auxiliary fuel (equipment, generators) and
       import without review.
    4. Matches below the confidence threshold are flagged.
    5. Everything else is a new fleet transaction, subject to anomaly checks.
    """

    def __init__(
        self,
        config: ClassificationConfig | None = None,
        anomaly_checker: AnomalyChecker | None = None
    ):
        """Initialize the classifier.

        Args:
            config: Threshold and vehicle id pattern settings
            anomaly_checker: Optional anomaly rules for clean fleet rows
        """
        self.config = config or ClassificationConfig()
        self.anomaly_checker = anomaly_checker
        self._vehicle_pattern = re.compile(self.config.vehicle_id_pattern, re.IGNORECASE)
        self._non_vehicle_keywords = [k.upper() for k in self.config.non_vehicle_keywords]

    def looks_like_vehicle_id(self, identifier: str) -> bool:
        """Check whether a raw identifier is plausibly a fleet vehicle id."""
        identifier = (identifier or "").strip().upper()
        if not identifier:
            return False

        if any(keyword in identifier for keyword in self._non_vehicle_keywords):
            return False

        return bool(self._vehicle_pattern.match(identifier))

    def classify(
        self,
        row: RawStatementRow,
        match_result: MatchResult,
        is_duplicate: bool,
        history: list[FuelHistoryEntry] | None = None
    ) -> ProcessedTransaction:
        """Classify a single row.

        Args:
            row: Parsed statement row
            match_result: Result of vehicle matching
            is_duplicate: Whether the row was already imported
            history: Recent purchases for the matched vehicle, newest first

        Returns:
            ProcessedTransaction
        """
        unmatched = match_result.match_type == MatchType.UNMATCHED
        vehicle_like = self.looks_like_vehicle_id(row.vehicle_identifier)

        if is_duplicate:
            txn_type = (
                TransactionType.AUXILIARY_FUEL if unmatched and not vehicle_like
                else TransactionType.FLEET_VEHICLE
            )
            return self._build(row, match_result, TransactionStatus.DUPLICATE, txn_type, DUPLICATE_REASON)

        if unmatched and vehicle_like:
            return self._build(
                row, match_result, TransactionStatus.FLAGGED,
                TransactionType.FLEET_VEHICLE, UNMATCHED_VEHICLE_REASON
            )

        if unmatched:
            return self._build(row, match_result, TransactionStatus.NEW, TransactionType.AUXILIARY_FUEL)

        if match_result.confidence < self.config.confidence_threshold:
            return self._build(
                row, match_result, TransactionStatus.FLAGGED,
                TransactionType.FLEET_VEHICLE, LOW_CONFIDENCE_REASON
            )

        if self.anomaly_checker is not None:
            anomaly = self.anomaly_checker.check(row, history)
            if anomaly:
                return self._build(
                    row, match_result, TransactionStatus.FLAGGED,
                    TransactionType.FLEET_VEHICLE, anomaly
                )

        return self._build(row, match_result, TransactionStatus.NEW, TransactionType.FLEET_VEHICLE)

    def _build(
        self,
        row: RawStatementRow,
        match_result: MatchResult,
        status: TransactionStatus,
        txn_type: TransactionType,
        reason: str | None = None
    ) -> ProcessedTransaction:
        if status == TransactionStatus.FLAGGED:
            logger.debug(f"Flagged {row.source_transaction_id}: {reason}")

        return ProcessedTransaction(
            row=row,
            status=status,
            transaction_type=txn_type,
            match=match_result,
            flag_reason=reason,
        )
