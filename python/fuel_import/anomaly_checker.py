"""
Anomaly Checker Module

Flags fleet fuel purchases that look unusual: weekend or after-hours
fill-ups, spend or volume well above the vehicle's recent average, and
implausible fuel economy.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from .config import AnomalyConfig
from .models import RawStatementRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FuelHistoryEntry:
    """A previously imported fuel purchase for one vehicle."""

    gallons: Decimal
    total_cost: Decimal
    odometer: int | None = None

    @classmethod
    def from_record(cls, record: dict) -> "FuelHistoryEntry":
        odometer = record.get("odometer")
        return cls(
            gallons=Decimal(str(record.get("gallons") or 0)),
            total_cost=Decimal(str(record.get("total_cost") or 0)),
            odometer=int(odometer) if odometer is not None else None,
        )


class AnomalyChecker:
    """Applies anomaly rules to a fleet transaction."""

    def __init__(self, config: AnomalyConfig | None = None):
        self.config = config or AnomalyConfig()
        self._allowlist = {name.strip().lower() for name in self.config.allowlisted_employees}

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def is_allowlisted(self, employee_name: str) -> bool:
        return employee_name.strip().lower() in self._allowlist

    def check(
        self,
        row: RawStatementRow,
        history: list[FuelHistoryEntry] | None = None
    ) -> str | None:
        """Return the first anomaly found for a row.

        Args:
            row: Statement row already matched to a vehicle
            history: Recent purchases for the vehicle, newest first

        Returns:
            Anomaly reason, or None if the row looks normal
        """
        if not self.enabled or self.is_allowlisted(row.employee_name):
            return None

        reason = self._check_timing(row)
        if reason:
            return reason

        if history:
            return self._check_history(row, history)

        return None

    def _check_timing(self, row: RawStatementRow) -> str | None:
        when = row.transaction_date

        if self.config.flag_weekends and when.weekday() >= 5:
            return "Weekend transaction"

        # Midnight means the statement carried no time of day
        if when.hour == 0 and when.minute == 0 and when.second == 0:
            return None

        if when.hour < self.config.business_hours_start or when.hour > self.config.business_hours_end:
            return "After-hours transaction"

        return None

    def _check_history(self, row: RawStatementRow, history: list[FuelHistoryEntry]) -> str | None:
        count = Decimal(len(history))

        avg_cost = sum((h.total_cost for h in history), Decimal("0")) / count
        if avg_cost > 0 and row.total_cost > avg_cost * Decimal(str(self.config.high_cost_multiplier)):
            return "Unusually high cost"

        avg_gallons = sum((h.gallons for h in history), Decimal("0")) / count
        if avg_gallons > 0 and row.gallons > avg_gallons * Decimal(str(self.config.high_gallons_multiplier)):
            return "Unusually high fuel amount"

        last = history[0]
        if last.odometer and row.has_odometer and row.odometer > last.odometer and row.gallons > 0:
            mpg = Decimal(row.odometer - last.odometer) / row.gallons
            if mpg < Decimal(str(self.config.min_mpg)) or mpg > Decimal(str(self.config.max_mpg)):
                logger.debug(f"Row {row.source_transaction_id}: {mpg:.1f} mpg outside expected range")
                return "Unusual fuel economy"

        return None
